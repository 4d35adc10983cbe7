# Signature capture module
from app.signature.capture import (
    SignatureCapture,
    PointerEvent,
    SurfaceRect,
    EmptySignatureError,
    decode_signature_image,
    is_blank_signature,
)

__all__ = [
    "SignatureCapture",
    "PointerEvent",
    "SurfaceRect",
    "EmptySignatureError",
    "decode_signature_image",
    "is_blank_signature",
]

# Utilities module

from .form_utils import (
    strip_dial_code,
    validate_email,
    validate_otp,
    validate_phone_number,
)
from .image_utils import (
    MAX_UPLOAD_BYTES,
    ImageProcessingError,
    compress_image,
    decode_data_url,
    encode_data_url,
    to_absolute_url,
    validate_image_upload,
)

__all__ = [
    "strip_dial_code",
    "validate_email",
    "validate_otp",
    "validate_phone_number",
    "MAX_UPLOAD_BYTES",
    "ImageProcessingError",
    "compress_image",
    "decode_data_url",
    "encode_data_url",
    "to_absolute_url",
    "validate_image_upload",
]

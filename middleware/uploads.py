# middleware/uploads.py
"""
Image upload handling for the AI analysis endpoints
"""

import logging
from dataclasses import dataclass

from flask import current_app, request

from core.errors import ImageRejectedError

logger = logging.getLogger(__name__)

JPEG_SIGNATURE = b'\xff\xd8\xff'
PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
WEBP_MARKER = b'WEBP'


@dataclass
class UploadedImage:
    data: bytes
    mime_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)


def is_valid_image_format(data: bytes) -> bool:
    """Check magic bytes: JPEG, PNG or WebP"""
    if not data or len(data) < 12:
        return False
    if data.startswith(JPEG_SIGNATURE) or data.startswith(PNG_SIGNATURE):
        return True
    return data[8:12] == WEBP_MARKER


def detect_mime_type(data: bytes) -> str:
    if data.startswith(PNG_SIGNATURE):
        return 'image/png'
    if data[8:12] == WEBP_MARKER:
        return 'image/webp'
    return 'image/jpeg'


def read_image_upload(field: str = 'image') -> UploadedImage:
    """
    Read a single image from the multipart body.

    Raises:
        ImageRejectedError: missing, empty, oversized or non-image upload
    """
    files = request.files.getlist(field)
    if not files:
        raise ImageRejectedError('No image uploaded', details=f'missing multipart field {field!r}')
    if len(files) > 1:
        raise ImageRejectedError('Too many files. Upload one image at a time')

    upload = files[0]
    mimetype = upload.mimetype or ''
    if not mimetype.startswith('image/'):
        logger.warning(f"Rejected upload with type {mimetype!r} from {request.remote_addr}")
        raise ImageRejectedError(f'Unsupported file type: {mimetype or "unknown"}. Only images are allowed')

    max_size = current_app.config.get('MAX_IMAGE_SIZE', 10 * 1024 * 1024)
    data = upload.read(max_size + 1)
    if not data:
        raise ImageRejectedError('The uploaded image is empty')
    if len(data) > max_size:
        raise ImageRejectedError(
            f'Image too large. Maximum size: {max_size // (1024 * 1024)}MB',
            status_code=413
        )

    # Magic bytes win over the type declared by the client
    if is_valid_image_format(data):
        mimetype = detect_mime_type(data)
    return UploadedImage(data=data, mime_type=mimetype, filename=upload.filename or 'upload')

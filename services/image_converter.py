"""
Image format conversion service

Validates uploaded base64 images and converts formats that the provider
does not accept (including HEIC from iPhones) to JPEG.
"""

import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from .utils import decode_base64_image

# Register HEIF/HEIC support
register_heif_opener()

FORMAT_TO_MIME = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'GIF': 'image/gif',
    'BMP': 'image/bmp',
    'WEBP': 'image/webp',
    'HEIC': 'image/heic',
    'HEIF': 'image/heif',
    'TIFF': 'image/tiff',
    'ICO': 'image/x-icon',
}

# Formats the provider accepts as-is
PASSTHROUGH_MIME_TYPES = {'image/jpeg', 'image/png', 'image/webp'}


def detect_mime_type(image_bytes: bytes) -> str:
    """
    Detect image MIME type from raw bytes.

    Raises:
        ValueError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return FORMAT_TO_MIME.get(img.format, 'image/jpeg')
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Invalid image file: {e}")


def needs_conversion(mime_type: str) -> bool:
    """
    Check if image format needs conversion for provider compatibility.
    """
    return mime_type.lower() not in PASSTHROUGH_MIME_TYPES


def convert_to_jpeg(image_bytes: bytes, quality: int = 95) -> bytes:
    """
    Convert any image format to JPEG bytes.

    Raises:
        ValueError: If conversion fails
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            # Convert RGBA to RGB if necessary
            if img.mode in ('RGBA', 'LA', 'P'):
                # Create white background
                background = Image.new('RGB', img.size, (255, 255, 255))
                if img.mode == 'P':
                    img = img.convert('RGBA')
                background.paste(img, mask=img.split()[-1] if img.mode in ('RGBA', 'LA') else None)
                img = background
            elif img.mode != 'RGB':
                img = img.convert('RGB')

            output = io.BytesIO()
            img.save(output, 'JPEG', quality=quality, optimize=True)
            return output.getvalue()

    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Failed to convert image to JPEG: {e}")


def validate_and_prepare_image(image_base64: str) -> Tuple[bytes, str]:
    """
    Validate and prepare a base64 image (or data URI) for the provider.

    This function:
    1. Decodes the payload
    2. Validates the image can be opened and has sane dimensions
    3. Converts to JPEG if the format is not accepted upstream
    4. Returns the final bytes and MIME type

    Raises:
        ValueError: If image is missing, invalid or cannot be processed
    """
    image_bytes = decode_base64_image(image_base64)

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.verify()

        # Re-open (verify leaves the image unusable)
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Invalid image file: {e}")

    if width < 10 or height < 10:
        raise ValueError("Image dimensions too small")
    if width > 10000 or height > 10000:
        raise ValueError("Image dimensions too large")

    mime_type = detect_mime_type(image_bytes)
    if needs_conversion(mime_type):
        return convert_to_jpeg(image_bytes), 'image/jpeg'

    return image_bytes, mime_type

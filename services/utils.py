"""
Utility functions for image handling

Helpers for moving images between files, raw bytes, base64 strings and
data URIs.
"""

import base64
import binascii
import mimetypes
import os


def read_local_image(image_path):
    """
    Reads a local image file and returns the bytes and mime type.

    Args:
        image_path: Path to the image file

    Returns:
        tuple: (image_bytes, mime_type)

    Raises:
        FileNotFoundError: If the image doesn't exist
    """
    if not os.path.exists(image_path):
        raise FileNotFoundError(f"Could not find image at: {image_path}")

    mime_type, _ = mimetypes.guess_type(image_path)
    if mime_type is None:
        mime_type = "image/jpeg"  # Default fallback

    with open(image_path, "rb") as f:
        image_bytes = f.read()

    return image_bytes, mime_type


def save_binary_file(file_name, data):
    """
    Saves binary data to a file.

    Args:
        file_name: Path where the file should be saved
        data: Binary data to write

    Returns:
        str: The file path where data was saved
    """
    with open(file_name, "wb") as f:
        f.write(data)
    return file_name


def validate_image_path(image_path):
    """
    Validates that an image path exists and is a valid image format.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file is not a valid image format
    """
    if not os.path.exists(image_path):
        raise FileNotFoundError(f"Image not found: {image_path}")

    valid_extensions = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.heic', '.heif'}
    _, ext = os.path.splitext(image_path.lower())

    if ext not in valid_extensions:
        raise ValueError(f"Invalid image format: {ext}. Supported: {valid_extensions}")

    return True


def strip_data_uri(image_base64):
    """Drop a ``data:<mime>;base64,`` prefix if present"""
    if not image_base64:
        return ''
    if image_base64.startswith('data:') and ',' in image_base64:
        return image_base64.split(',', 1)[1]
    return image_base64


def to_data_uri(data, mime_type="image/jpeg"):
    """Encode bytes (or an existing base64 string) as a data URI"""
    if isinstance(data, (bytes, bytearray)):
        data = base64.b64encode(bytes(data)).decode('ascii')
    return f"data:{mime_type};base64,{data}"


def decode_base64_image(image_base64):
    """
    Decode a base64 string or data URI into bytes.

    Raises:
        ValueError: If the payload is empty or not valid base64
    """
    payload = strip_data_uri(image_base64 or '').strip()
    if not payload:
        raise ValueError("No image provided")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is not valid base64: {e}")


def image_file_to_data_uri(image_path):
    image_bytes, mime_type = read_local_image(image_path)
    return to_data_uri(image_bytes, mime_type)


def save_data_uri(data_uri, output_dir, stem):
    """
    Write a data URI to ``output_dir`` using an extension from its mime type.

    Returns:
        str: Path of the written file
    """
    header, _, payload = data_uri.partition(',')
    mime_type = header[5:].split(';')[0] if header.startswith('data:') else 'image/jpeg'
    extension = mimetypes.guess_extension(mime_type) or '.jpg'
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{stem}{extension}")
    return save_binary_file(path, base64.b64decode(payload))

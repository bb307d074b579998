"""Image format sniffing and extension normalization for embedded assets."""

import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("png", "jpg", "webp", "gif", "avif")
DEFAULT_EXTENSION = "png"

_ALIASES = {
    "jpeg": "jpg",
    "mpo": "jpg",  # multi-picture JPEG from cameras
}


def detect_image_extension(data: bytes) -> str:
    """
    Guess the file extension of an image with Pillow.

    Returns 'png' when the format cannot be identified or is not one of
    the supported bundle image types.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            format_lower = img.format.lower() if img.format else ""
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Could not identify image ({len(data)} bytes): {e}")
        return DEFAULT_EXTENSION

    ext = _ALIASES.get(format_lower, format_lower)
    if ext not in SUPPORTED_EXTENSIONS:
        logger.debug(f"Image format '{format_lower}' not supported, using {DEFAULT_EXTENSION}")
        return DEFAULT_EXTENSION
    return ext


def normalize_extension(extension) -> str:
    """
    Normalize an extension to its canonical lowercase form.

    Empty values fall back to 'png'.

    Raises:
        ValueError: If the extension is not a supported image type
    """
    if extension is None:
        return DEFAULT_EXTENSION

    ext = str(extension).strip().lower().lstrip(".")
    if not ext:
        return DEFAULT_EXTENSION

    ext = _ALIASES.get(ext, ext)
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported image extension '{extension}'. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    return ext

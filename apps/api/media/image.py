import logging
import os

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def compress_image(image_path: str, quality: int = 80) -> str:
    """
    Re-encode an image as JPEG at the given quality.
    Returns the path of ``<name>_compressed.jpg`` next to the source.
    """
    stem, _ = os.path.splitext(image_path)
    output_path = f"{stem}_compressed.jpg"

    try:
        with Image.open(image_path) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(output_path, "JPEG", quality=quality, optimize=True)
    except UnidentifiedImageError as e:
        logger.error(f"Error compressing image {image_path}: {e}")
        raise ValueError(f"Unsupported format: {e}") from e

    return output_path

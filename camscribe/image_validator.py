from pathlib import Path
from typing import Optional

from PIL import Image

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


def detect_mime(path: Path) -> Optional[str]:
    """MIME type of a decodable image, or None when Pillow cannot identify it."""
    try:
        with Image.open(path) as img:
            fmt = (img.format or "").upper()
    except (OSError, ValueError):
        return None
    return _FORMAT_MIME.get(fmt)

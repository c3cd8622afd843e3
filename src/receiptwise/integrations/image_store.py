"""Local file storage for uploaded receipt images."""

import secrets
import time
from pathlib import Path

URL_PREFIX = "/uploads/"


class LocalImageStore:
    """Stores receipt images in a local uploads directory.

    Images are addressed by their public URL path (``/uploads/<filename>``),
    which is what gets saved on the receipt record.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def save(self, image: bytes, mime_type: str) -> str:
        """Write an image and return its URL path.

        Raises:
            OSError: If the directory or file cannot be written
        """
        self.root.mkdir(parents=True, exist_ok=True)

        extension = mime_type.split("/")[-1]
        filename = f"receipt_{int(time.time() * 1000)}_{secrets.token_hex(3)}.{extension}"
        (self.root / filename).write_bytes(image)
        return URL_PREFIX + filename

    def path_for(self, url: str) -> Path:
        # Only the final path component is honored so a URL cannot escape root
        return self.root / Path(url).name

    def delete(self, url: str) -> None:
        """Remove a stored image.

        Raises:
            OSError: If the file cannot be removed (including when it is missing)
        """
        self.path_for(url).unlink()

"""File-backed storage for generated image artifacts."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from fluxstudio.core.exceptions import InvalidRequest

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Store image bytes in a directory, one file per gallery id.

    Args:
        images_dir: Managed directory.  Created on first write.
        suffix: File extension appended to the id.
    """

    def __init__(self, images_dir: Path, suffix: str = ".png"):
        self.images_dir = Path(images_dir)
        self.suffix = suffix

    def filename_for(self, image_id: str) -> str:
        return f"{image_id}{self.suffix}"

    def resolve(self, filename: str) -> Path:
        """Compose the on-disk path for *filename* without touching the disk.

        Raises:
            InvalidRequest: If *filename* is not a plain file name.
        """
        if not filename or Path(filename).name != filename or filename in (".", ".."):
            raise InvalidRequest(f"Invalid artifact filename: {filename!r}")
        return self.images_dir / filename

    def save(self, image_id: str, data: bytes) -> Path:
        """Write *data* to the file derived from *image_id*.

        The bytes go to a temporary sibling first and are renamed into place,
        so a repeated id replaces the old file whole.

        Returns:
            Path of the written file.
        """
        path = self.resolve(self.filename_for(image_id))
        self.images_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.images_dir, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Image saved: {path.name} ({len(data)} bytes)")
        return path

    def delete(self, filename: str) -> bool:
        """Remove *filename* if present.

        Returns:
            ``True`` if a file was removed, ``False`` if it was already gone.
        """
        path = self.resolve(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Artifact already missing on delete: {filename}")
            return False
        return True

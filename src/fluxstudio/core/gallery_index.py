"""Gallery metadata storage for FLUX Studio.

The gallery is intentionally simple:

- metadata lives in a single ``gallery.json`` file
- image files live in the images directory
- list order is reverse-chronological (newest first)

``gallery.json`` is the only record of which images exist.  It is loaded in
full for every operation and rewritten in full on every change.  A missing
file means an empty gallery (first run); a file that exists but cannot be
parsed raises :class:`~fluxstudio.core.exceptions.GalleryIndexError` instead
of being treated as empty, since the next save would otherwise wipe it.

Entries whose image file has gone missing are returned as-is.  Nothing here
reconciles the index against the images directory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from fluxstudio.core.exceptions import GalleryIndexError, NotFound
from fluxstudio.core.models import GalleryEntry

logger = logging.getLogger(__name__)


class GalleryIndex:
    """Authoritative, file-backed list of :class:`GalleryEntry` records.

    Read-modify-write cycles (:meth:`prepend`, :meth:`toggle_favorite`,
    :meth:`remove`) run under a per-instance lock and never suspend between
    load and save, so two cycles cannot interleave.

    Args:
        gallery_db: Path to ``gallery.json``.
    """

    def __init__(self, gallery_db: Path):
        self.gallery_db = Path(gallery_db)
        self._lock = threading.RLock()

    def load(self) -> list[GalleryEntry]:
        """Load every entry in persisted order.

        Returns:
            The entries, or an empty list if the index does not exist yet.

        Raises:
            GalleryIndexError: If the file exists but is not a valid index.
        """
        if not self.gallery_db.exists():
            return []

        try:
            with open(self.gallery_db, encoding="utf-8") as handle:
                raw_entries = json.load(handle)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read gallery index {self.gallery_db}: {e}")
            raise GalleryIndexError(str(self.gallery_db)) from e

        if not isinstance(raw_entries, list):
            raise GalleryIndexError(
                str(self.gallery_db), "Gallery index must be a JSON array"
            )

        try:
            return [GalleryEntry.model_validate(entry) for entry in raw_entries]
        except ValidationError as e:
            raise GalleryIndexError(
                str(self.gallery_db), f"Gallery index holds an invalid entry: {e}"
            ) from e

    def save(self, entries: list[GalleryEntry]) -> None:
        """Atomically replace the index with *entries*.

        The document is written to a temporary file in the same directory and
        renamed over ``gallery.json``.
        """
        self.gallery_db.parent.mkdir(parents=True, exist_ok=True)
        document = [entry.as_dict() for entry in entries]

        fd, tmp_name = tempfile.mkstemp(
            dir=self.gallery_db.parent, prefix=".gallery-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, self.gallery_db)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def find(self, image_id: str) -> GalleryEntry | None:
        return next((entry for entry in self.load() if entry.id == image_id), None)

    def prepend(self, entry: GalleryEntry) -> None:
        """Insert *entry* at the head of the index."""
        with self._lock:
            entries = self.load()
            if any(existing.id == entry.id for existing in entries):
                raise ValueError(f"Duplicate gallery id: {entry.id}")
            entries.insert(0, entry)
            self.save(entries)

    def toggle_favorite(self, image_id: str) -> GalleryEntry:
        """Flip the favourite flag on *image_id* and return the updated entry.

        Raises:
            NotFound: If no entry has that id.  The index is left untouched.
        """
        return self._update(
            image_id, lambda entry: entry.model_copy(update={"favorite": not entry.favorite})
        )

    def remove(self, image_id: str) -> GalleryEntry:
        """Remove *image_id* from the index and return the removed entry.

        Raises:
            NotFound: If no entry has that id.
        """
        with self._lock:
            entries = self.load()
            removed = next((entry for entry in entries if entry.id == image_id), None)
            if removed is None:
                raise NotFound(image_id)
            self.save([entry for entry in entries if entry.id != image_id])
            return removed

    def _update(
        self, image_id: str, change: Callable[[GalleryEntry], GalleryEntry]
    ) -> GalleryEntry:
        with self._lock:
            entries = self.load()
            for position, entry in enumerate(entries):
                if entry.id == image_id:
                    entries[position] = change(entry)
                    self.save(entries)
                    return entries[position]
            raise NotFound(image_id)

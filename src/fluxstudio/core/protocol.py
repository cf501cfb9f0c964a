"""Decoding helpers for the model service's line-delimited JSON protocol.

The ``/api/generate`` endpoint answers with one JSON object per line, both in
single-shot and streaming mode.  Lines are heterogeneous: some carry progress
counters (``completed``/``total``), some carry the base64 ``image`` payload,
and most carry fields FLUX Studio does not care about.  Each line is decoded
independently and malformed lines are skipped.

In streaming mode, lines arrive split across arbitrary transport chunks.
:class:`RecordBuffer` holds the incomplete trailing fragment until its
newline arrives, so framing depends only on newline boundaries.
"""

from __future__ import annotations

import base64
import binascii
import codecs
import json
import logging
from collections.abc import Iterable
from numbers import Real

from fluxstudio.core.exceptions import NoImageProduced
from fluxstudio.core.models import UpstreamRecord

logger = logging.getLogger(__name__)


def _number(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    return float(value)


def decode_record(line: str) -> UpstreamRecord | None:
    """Decode one NDJSON line into an :class:`UpstreamRecord`.

    Args:
        line: A single line of upstream output, with or without its newline.

    Returns:
        The extracted record, or ``None`` for blank, malformed, or non-object
        lines.
    """
    line = line.strip()
    if not line:
        return None

    try:
        payload = json.loads(line)
    except ValueError:
        logger.debug(f"Skipping unparseable upstream line ({len(line)} chars)")
        return None

    if not isinstance(payload, dict):
        return None

    image = payload.get("image")
    error = payload.get("error")
    return UpstreamRecord(
        image=image if isinstance(image, str) else None,
        completed=_number(payload.get("completed")),
        total=_number(payload.get("total")),
        error=error if isinstance(error, str) else None,
    )


def decode_body(text: str) -> list[UpstreamRecord]:
    """Decode a complete response body, skipping unusable lines."""
    records = (decode_record(line) for line in text.split("\n"))
    return [record for record in records if record is not None]


class RecordBuffer:
    """Reassemble NDJSON records from arbitrarily split byte chunks.

    Bytes are decoded incrementally, so a multi-byte UTF-8 character split
    across two chunks is still decoded correctly.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[UpstreamRecord]:
        """Add a transport chunk and return every record completed by it."""
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return [record for record in map(decode_record, lines) if record is not None]

    def flush(self) -> list[UpstreamRecord]:
        """Decode whatever remains once the stream has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        record = decode_record(tail)
        return [record] if record is not None else []


class ImageAccumulator:
    """Track the last non-empty image payload across a sequence of records."""

    def __init__(self) -> None:
        self.image: str = ""
        self.error: str | None = None

    def add(self, record: UpstreamRecord) -> None:
        if record.image:
            self.image = record.image
        if record.error:
            self.error = record.error

    def extend(self, records: Iterable[UpstreamRecord]) -> None:
        for record in records:
            self.add(record)

    def decode(self) -> bytes:
        """Return the decoded image bytes.

        Raises:
            NoImageProduced: If no record carried an image, or the retained
                payload is not valid base64.
        """
        if not self.image:
            message = "No image data in response"
            if self.error:
                message = f"{message}: {self.error}"
            raise NoImageProduced(message)

        try:
            return base64.b64decode(self.image, validate=True)
        except (binascii.Error, ValueError) as e:
            raise NoImageProduced(f"Image payload is not valid base64: {e}") from e

"""CSV rendering of channel rows."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from typing import Final

from .channels import Channel
from .errors import EncodingError

CSV_HEADER: Final[tuple[str, ...]] = ("id", "name", "topic", "purpose", "memberCount")


def encode(rows: Sequence[Channel]) -> bytes:
    """Serialize rows as UTF-8 CSV with a fixed header; empty input yields the header alone."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    try:
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow((row.id, row.name, row.topic, row.purpose, row.member_count))
        return buffer.getvalue().encode("utf-8")
    except (csv.Error, UnicodeEncodeError) as exc:
        raise EncodingError(f"Could not encode channel rows as CSV: {exc}") from exc


def decode(data: bytes | str) -> list[Channel]:
    """Parse CSV produced by :func:`encode` back into rows."""
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        header = next(reader)
    except StopIteration:
        return []
    if tuple(header) != CSV_HEADER:
        raise EncodingError(f"Unexpected CSV header: {header!r}")
    rows: list[Channel] = []
    for fields in reader:
        if not fields:
            continue
        cid, name, topic, purpose, count = fields
        rows.append(Channel(id=cid, name=name, topic=topic, purpose=purpose, member_count=int(count or 0)))
    return rows


__all__ = ["CSV_HEADER", "decode", "encode"]

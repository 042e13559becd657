"""Line-delimited record files.

Each line is a JSON array ``[key, value]`` or ``[key, value, flags]``. The
file as a whole is not a JSON document: records are appended as they are
produced and read back one line at a time, so neither side holds the dataset
in memory and a file cut short still parses up to its last full line.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Final

from .exceptions import RecordFormatError

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_READ_RATE: Final[int] = 200_000  # bytes per second
DEFAULT_CHUNK_SIZE: Final[int] = 50_000


@dataclass(frozen=True)
class Record:
    key: str
    value: Any
    flags: dict[str, Any] | None = None


def format_record(key: str, value: Any, flags: dict[str, Any] | None = None) -> str:
    """Serialize one record as a single newline-terminated line."""
    parts = [json.dumps(key, ensure_ascii=False), json.dumps(value, ensure_ascii=False, separators=(",", ":"))]
    if flags:
        parts.append(json.dumps(flags, ensure_ascii=False, separators=(",", ":")))
    return f"[{', '.join(parts)}]\n"


def parse_record(line: str, line_number: int) -> Record:
    try:
        item = json.loads(line)
    except json.JSONDecodeError as e:
        raise RecordFormatError(line_number, str(e)) from e
    if not isinstance(item, list) or len(item) not in (2, 3):
        raise RecordFormatError(line_number, "expected a JSON array of 2 or 3 elements")
    if not isinstance(item[0], str):
        raise RecordFormatError(line_number, "record key must be a string")
    flags = item[2] if len(item) == 3 else None
    if flags is not None and not isinstance(flags, dict):
        raise RecordFormatError(line_number, "record flags must be an object")
    return Record(key=item[0], value=item[1], flags=flags)


class RecordWriter:
    """Appends records to a text stream, one complete line per write call.

    Writes are synchronous, so with a single-threaded event loop no two
    records can interleave within a line.
    """

    _stream: IO[str]
    count: int

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream
        self.count = 0

    @classmethod
    def open(cls, path: str | Path) -> RecordWriter:
        return cls(Path(path).open("w", encoding="utf-8"))

    def write(self, key: str, value: Any, flags: dict[str, Any] | None = None) -> None:
        self._stream.write(format_record(key, value, flags))
        self.count += 1

    def close(self) -> None:
        self._stream.flush()
        self._stream.close()

    def __enter__(self) -> RecordWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def read_records(lines: Iterable[str]) -> Iterator[Record]:
    """Lazily parse records from an iterable of lines (e.g. an open file).

    Blank lines are ignored; anything else that does not parse aborts the read.
    """
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        yield parse_record(line, line_number)


async def stream_records(
    path: str | Path,
    *,
    rate: int | None = DEFAULT_READ_RATE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: Callable[[int], None] | None = None,
) -> AsyncIterator[Record]:
    """Read records from a file, throttled to ``rate`` bytes per second.

    The file is consumed in ``chunk_size`` pieces; after each piece the reader
    sleeps long enough to keep the average rate under the limit. ``on_progress``
    receives the number of bytes consumed by each chunk.
    """
    started = time.monotonic()
    consumed = 0
    pending = ""
    line_number = 0
    decoder = codecs.getincrementaldecoder("utf-8")()

    with Path(path).open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            consumed += len(chunk)
            if on_progress is not None:
                on_progress(len(chunk))
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                line_number += 1
                if line.strip():
                    yield parse_record(line, line_number)
            if rate:
                delay = consumed / rate - (time.monotonic() - started)
                if delay > 0:
                    await asyncio.sleep(delay)

    pending += decoder.decode(b"", final=True)
    if pending.strip():
        yield parse_record(pending, line_number + 1)

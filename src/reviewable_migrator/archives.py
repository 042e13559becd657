"""Archived reviews: gzip-compressed, base64-encoded JSON payloads."""

from __future__ import annotations

import base64
import gzip
import json
from typing import Any


def decompress_payload(payload: str) -> Any:
    return json.loads(gzip.decompress(base64.b64decode(payload)).decode("utf-8"))


def compress_payload(value: Any) -> str:
    data = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(gzip.compress(data, compresslevel=9)).decode("ascii")

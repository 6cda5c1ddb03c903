"""Stable cache keys for sets of table references.

Keys are order- and duplicate-insensitive: references are canonicalized,
deduplicated and sorted before encoding.

Known limitation: the key is a truncated prefix of the base64 encoding, so
two sets whose sorted canonical join shares its first 24 characters map to
the same key. Large reference sets that differ only late in their sorted
order will collide.
"""
from __future__ import annotations

import base64
import re
from typing import Iterable

from cataloglens.domain.refs import TableReference


CACHE_KEY_MAX_LENGTH = 32
AGENT_ID_MAX_KEY_LENGTH = 40

_DELIMITER = "|"
_UNSAFE = re.compile(r"[^A-Za-z0-9]")


def canonical_references(refs: Iterable[TableReference]) -> list[str]:
    return sorted({ref.canonical for ref in refs})


def derive_cache_key(refs: Iterable[TableReference]) -> str:
    joined = _DELIMITER.join(canonical_references(refs))
    encoded = base64.b64encode(joined.encode("utf-8")).decode("ascii")
    return _UNSAFE.sub("", encoded[:CACHE_KEY_MAX_LENGTH])


def agent_id_for(cache_key: str) -> str:
    return f"agent_{cache_key[:AGENT_ID_MAX_KEY_LENGTH]}"

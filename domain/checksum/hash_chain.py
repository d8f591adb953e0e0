"""
SHA-512 hash chain used by every gateway checksum.

Parts are joined verbatim with the delimiter; nothing is trimmed or
normalised, so equal ordered parts always produce equal digests.
"""
from __future__ import annotations

import hashlib
from typing import Iterable

DEFAULT_DELIMITER = "|"


def digest(text: str) -> str:
    """Upper-case hex SHA-512 of the UTF-8 bytes of ``text``."""
    return hashlib.sha512(text.encode("utf-8")).hexdigest().upper()


def chain(parts: Iterable[str], delimiter: str = DEFAULT_DELIMITER) -> str:
    return digest(delimiter.join(parts))

# services/payments/signature.py
"""
Keyed MACs over ordered field lists.

Providers sign a delimiter-joined list of values. Which fields, in which
order, and how each value is formatted (integer minor units, the exact
return URLs used at creation time) is part of each provider's wire
contract, so callers always pass the already-formatted strings.
"""

from __future__ import annotations
import hashlib
import hmac
from typing import Iterable

DEFAULT_DELIMITER = ":"


def canonicalize(fields: Iterable[object], delimiter: str = DEFAULT_DELIMITER) -> str:
    """The exact string that gets MAC'ed. ``None`` becomes an empty value."""
    return delimiter.join("" if f is None else str(f) for f in fields)


def sign(secret: str | bytes, fields: Iterable[object], delimiter: str = DEFAULT_DELIMITER) -> str:
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    msg = canonicalize(fields, delimiter).encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).hexdigest()


def verify(secret: str | bytes, fields: Iterable[object], claimed: object,
           delimiter: str = DEFAULT_DELIMITER) -> bool:
    if not secret or not isinstance(claimed, str) or not claimed:
        return False
    expected = sign(secret, fields, delimiter)
    return hmac.compare_digest(expected, claimed.strip().lower())

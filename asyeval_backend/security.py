from __future__ import annotations

import hashlib
import hmac
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import SESSION_MAX_AGE_SECONDS
from .errors import MalformedToken


# Canonical non-negative decimal: no sign, no leading zeros, no separators,
# at most 19 digits (identities are 63-bit, timestamps far smaller).
_CANONICAL_INT_RE = re.compile(r"0|[1-9][0-9]{0,18}")


@dataclass(frozen=True)
class ParsedToken:
    identity: int
    issued_at: int
    signature: str


def _parse_int(raw: str) -> int:
    if not _CANONICAL_INT_RE.fullmatch(raw):
        raise MalformedToken("Invalid numeric field")
    return int(raw)


class TokenCodec:
    """Signs and checks ``<identity>.<issued_at>#<hex hmac-sha256>`` tokens.

    The server keeps no session state: a token is valid iff its signature
    matches under the process secret and it is not older than ``max_age``.
    """

    def __init__(self, secret_key: str, max_age: int = SESSION_MAX_AGE_SECONDS):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._key = secret_key.encode("utf-8")
        self.max_age = max_age

    def sign(self, data: str) -> str:
        return hmac.new(self._key, data.encode("utf-8"), hashlib.sha256).hexdigest()

    def mint(self, identity: int, now: Optional[float] = None) -> str:
        issued_at = int(time.time() if now is None else now)
        data = f"{identity}.{issued_at}"
        return f"{data}#{self.sign(data)}"

    def parse(self, token: str) -> ParsedToken:
        parts = token.split("#")
        if len(parts) != 2:
            raise MalformedToken("Expected <data>#<signature>")
        data, signature = parts

        data_parts = data.split(".")
        if len(data_parts) != 2:
            raise MalformedToken("Expected <identity>.<issued_at>")

        return ParsedToken(
            identity=_parse_int(data_parts[0]),
            issued_at=_parse_int(data_parts[1]),
            signature=signature,
        )

    def verify(self, identity: int, issued_at: int, signature: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        expected = self.sign(f"{identity}.{issued_at}")
        # Compare first so the timing does not depend on the expiry check.
        signature_ok = hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
        fresh = now <= issued_at + self.max_age
        return signature_ok and fresh


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved

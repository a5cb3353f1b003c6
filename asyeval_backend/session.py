"""Pseudonymous sessions.

An identity is a random integer carried in a signed cookie. It is used to
attribute compilations, not to grant access, so every verification failure
quietly turns into a fresh identity instead of an error.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Mapping, Optional

from starlette.responses import Response

from .config import SESSION_COOKIE_NAME
from .errors import MalformedToken
from .security import TokenCodec


logger = logging.getLogger(__name__)

# Same range the identities have always had: a non-negative 63-bit integer.
IDENTITY_BITS = 63


@dataclass(frozen=True)
class SessionResolution:
    identity: int
    is_new: bool
    # Only set when a new identity was minted.
    token: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    """Per-request values handed explicitly to the pipeline and logs."""

    request_id: int
    session: SessionResolution

    @property
    def identity(self) -> int:
        return self.session.identity

    def log_extra(self) -> dict:
        return {"rid": self.request_id, "uid": self.identity}


def new_identity() -> int:
    return secrets.randbits(IDENTITY_BITS)


class SessionAuthenticator:
    def __init__(self, codec: TokenCodec, cookie_name: str = SESSION_COOKIE_NAME):
        self.codec = codec
        self.cookie_name = cookie_name

    def _identity_from_cookie(self, raw: Optional[str], now: Optional[float]) -> Optional[int]:
        if not raw:
            return None
        try:
            parsed = self.codec.parse(raw)
        except MalformedToken as exc:
            logger.debug("ignoring malformed session cookie: %s", exc)
            return None
        if not self.codec.verify(parsed.identity, parsed.issued_at, parsed.signature, now=now):
            logger.debug("ignoring session cookie with bad signature or expired timestamp")
            return None
        return parsed.identity

    def resolve(self, cookies: Mapping[str, str], now: Optional[float] = None) -> SessionResolution:
        identity = self._identity_from_cookie(cookies.get(self.cookie_name), now)
        if identity is not None:
            return SessionResolution(identity=identity, is_new=False)

        identity = new_identity()
        return SessionResolution(identity=identity, is_new=True, token=self.codec.mint(identity, now=now))

    def attach(self, response: Response, resolution: SessionResolution) -> Response:
        """Set the session cookie on ``response`` if a new identity was minted."""
        if resolution.is_new and resolution.token:
            response.set_cookie(
                key=self.cookie_name,
                value=resolution.token,
                max_age=self.codec.max_age,
                secure=True,
                httponly=True,
                samesite="lax",
            )
        return response

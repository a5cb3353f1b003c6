"""
Tests for pseudonymous session resolution and the reply cookie.
"""

import pytest
from starlette.responses import Response

from asyeval_backend.config import SESSION_MAX_AGE_SECONDS
from asyeval_backend.security import TokenCodec
from asyeval_backend.session import SessionAuthenticator


NOW = 1_700_000_000


@pytest.fixture
def sessions():
    return SessionAuthenticator(TokenCodec("session-test-secret"))


def test_missing_cookie_mints_new_identity(sessions):
    resolution = sessions.resolve({}, now=NOW)

    assert resolution.is_new
    assert 0 <= resolution.identity < 2**63
    parsed = sessions.codec.parse(resolution.token)
    assert parsed.identity == resolution.identity
    assert sessions.codec.verify(parsed.identity, parsed.issued_at, parsed.signature, now=NOW)


def test_valid_cookie_is_reused_without_reissue(sessions):
    token = sessions.codec.mint(31337, now=NOW)

    resolution = sessions.resolve({"session": token}, now=NOW + 60)

    assert resolution.identity == 31337
    assert not resolution.is_new
    assert resolution.token is None


@pytest.mark.parametrize(
    "cookie",
    [
        "garbage",
        "1.2#deadbeef",
        "",
        "1" * 5000 + ".1#abc",
        "123\n.1000#deadbeef",
    ],
)
def test_invalid_cookie_silently_mints(sessions, cookie):
    resolution = sessions.resolve({"session": cookie}, now=NOW)

    assert resolution.is_new
    assert resolution.token


def test_expired_cookie_silently_mints(sessions):
    token = sessions.codec.mint(5, now=NOW - SESSION_MAX_AGE_SECONDS - 1)

    resolution = sessions.resolve({"session": token}, now=NOW)

    assert resolution.is_new
    assert resolution.token != token


def test_fresh_identities_differ(sessions):
    identities = {sessions.resolve({}, now=NOW).identity for _ in range(50)}

    assert len(identities) == 50


def test_attach_sets_single_hardened_cookie(sessions):
    resolution = sessions.resolve({}, now=NOW)
    response = sessions.attach(Response(), resolution)

    cookies = response.headers.getlist("set-cookie")
    assert len(cookies) == 1
    header = cookies[0]
    assert header.startswith(f"session={resolution.token};")
    lowered = header.lower()
    assert f"max-age={SESSION_MAX_AGE_SECONDS}" in lowered
    assert "secure" in lowered
    assert "httponly" in lowered
    assert "samesite=lax" in lowered


def test_attach_skips_existing_identity(sessions):
    token = sessions.codec.mint(8, now=NOW)
    resolution = sessions.resolve({"session": token}, now=NOW)

    response = sessions.attach(Response(), resolution)

    assert response.headers.getlist("set-cookie") == []

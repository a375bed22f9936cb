"""Explicit session value for the shop-workflow platform.

A ``Session`` is owned by the caller and passed through the pipeline. Expiry
checking is a pure function of the session and a timestamp; nothing is
cached on disk or in module state.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import time
from dataclasses import dataclass, field

from repairflow.core.constants import (
    SESSION_DEFAULT_LIFETIME_SECONDS,
    SESSION_REFRESH_MARGIN_SECONDS,
)
from repairflow.core.logging import get_logger

_logger = get_logger("session")


def decode_jwt_expiry(token: str) -> float | None:
    """Return the ``exp`` claim of a JWT as epoch seconds, or None.

    The signature is not verified; the claim is only used to decide when to
    refresh. A leading ``Bearer `` prefix is tolerated.
    """
    raw = token.removeprefix("Bearer ").strip()
    parts = raw.split(".")
    if len(parts) != 3:
        return None

    payload_b64 = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (binascii.Error, ValueError):
        return None

    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


@dataclass(frozen=True)
class Session:
    """An authenticated platform session.

    Attributes:
        token: Bearer token sent as the Authorization header.
        expires_at: Expiry as epoch seconds.
    """

    token: str = field(repr=False)
    expires_at: float

    @classmethod
    def from_token(cls, token: str, now: float | None = None) -> Session:
        """Build a session, taking expiry from the JWT or assuming the default lifetime."""
        expires_at = decode_jwt_expiry(token)
        if expires_at is None:
            issued = time.time() if now is None else now
            expires_at = issued + SESSION_DEFAULT_LIFETIME_SECONDS
        return cls(token=token, expires_at=expires_at)

    def is_expired(self, now: float | None = None) -> bool:
        return is_expired(self, time.time() if now is None else now)

    @property
    def authorization(self) -> str:
        return self.token


def is_expired(
    session: Session,
    now: float,
    margin_seconds: float = SESSION_REFRESH_MARGIN_SECONDS,
) -> bool:
    """Whether ``session`` should be refreshed at ``now``.

    A session counts as expired ``margin_seconds`` before its real expiry.
    """
    return now >= session.expires_at - margin_seconds


def session_from_env(env_name: str, now: float | None = None) -> Session | None:
    """Build a session from a pre-acquired token in ``env_name``, if set."""
    token = os.environ.get(env_name)
    if not token:
        _logger.debug("session.token_env_missing", env=env_name)
        return None
    return Session.from_token(token, now=now)


__all__ = ["Session", "decode_jwt_expiry", "is_expired", "session_from_env"]

# Overview: Bearer sessions for the storefront API; issue, check, revoke and purge.

"""
Bearer sessions.

The client holds a random 64-hex-character token. Only its SHA-256 digest is
stored, so a leaked ``session_tokens`` table cannot be replayed. A session
dies 24 hours after login, or after 2 hours without a request, whichever
comes first. Logout and account deactivation revoke it.
"""

import hashlib
import logging
import secrets
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from quickshop.time_utils import utcnow


logger = logging.getLogger(__name__)

SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)
USER_AGENT_MAX = 512


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy, so a plain digest is enough here
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _active_by_token(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token))
        .filter(SessionToken.is_revoked.is_(False))
        .first()
    )


def _mark_revoked(record: SessionToken, reason: str) -> None:
    record.is_revoked = True
    record.revoked_at = utcnow()
    record.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """Open a session for ``user_id``; returns the row and the plaintext token."""
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    token = generate_token()
    issued = utcnow()
    record = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=issued,
        last_used_at=issued,
        expires_at=issued + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:USER_AGENT_MAX] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    logger.info("Session opened for user %s", user.id)
    return record, token


def validate_session(token: str) -> User | None:
    """
    Resolve a bearer token to its user, or None.

    A token past either timeout, or belonging to a deactivated account, is
    rejected; the idle and deactivation cases also revoke the row. A good
    token has its ``last_used_at`` bumped.
    """
    record = _active_by_token(token)
    if record is None:
        return None

    current = utcnow()
    if record.expires_at < current:
        return None

    if current - record.last_used_at > SESSION_IDLE_TIMEOUT:
        _mark_revoked(record, "Idle timeout")
        db.session.commit()
        return None

    owner = record.user
    if owner is None or not owner.is_active:
        _mark_revoked(record, "User account deactivated")
        db.session.commit()
        return None

    record.last_used_at = current
    db.session.commit()
    return owner


def revoke_session(token: str, reason: str = "User logout") -> bool:
    record = _active_by_token(token)
    if record is None:
        return False
    _mark_revoked(record, reason)
    db.session.commit()
    return True


def cleanup_expired_sessions(retention_days: int = 30) -> int:
    """Delete dead sessions created more than ``retention_days`` ago; returns the count."""
    current = utcnow()
    dead = db.or_(SessionToken.expires_at < current, SessionToken.is_revoked.is_(True))
    removed = (
        db.session.query(SessionToken)
        .filter(dead, SessionToken.created_at < current - timedelta(days=retention_days))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Removed %s stale sessions", removed)
    return removed

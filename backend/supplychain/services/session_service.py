# Overview: Opaque bearer tokens resolved to workflow actors.

"""
Identity/session collaborator.

WHY: The workflow core trusts a resolved (user, organization, role level)
triple and never sees credentials. This module issues opaque tokens and
turns them back into an Actor; login screens are outside the core.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, default 24h)
- Revocable; deactivated users and organizations stop resolving
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..errors import NotFound, OrphanedOrganization, ValidationFailed
from ..extensions import db
from ..models import Organization, SessionToken, User
from supplychain.time_utils import utcnow
from .access_service import Actor
from .hierarchy_service import company_of


def generate_token() -> str:
    """64-character hex string; the plaintext is handed out once and never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session token for an active user of an active organization.

    Returns (session_record, plaintext_token).
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", user_id=user_id)
    if not user.is_active:
        raise ValidationFailed("User is inactive", user_id=user_id)
    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if org is None or not org.is_active:
        raise ValidationFailed("Organization is not active", org_id=user.org_id)

    plaintext = generate_token()
    now = utcnow()
    hours = current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext),
        created_at=now,
        expires_at=now + timedelta(hours=hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext


def actor_for_user(user: User) -> Actor:
    org = user.organization
    try:
        company_id = company_of(user.org_id)
    except OrphanedOrganization:
        company_id = None
    return Actor(
        user_id=user.id,
        org_id=user.org_id,
        role_level=user.role_level,
        org_type=org.org_type if org else None,
        company_id=company_id,
        is_active=bool(user.is_active and org is not None and org.is_active),
    )


def resolve_actor(token: str) -> Actor | None:
    """
    Resolve a bearer token to an Actor.

    Returns None if the token is unknown, expired or revoked, or if the
    user or the user's organization has been deactivated.
    """
    if not token:
        return None
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None or session.expires_at < utcnow():
        return None
    user = session.user
    if user is None or not user.is_active:
        return None
    actor = actor_for_user(user)
    if not actor.is_active:
        return None
    return actor


def revoke_token(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True

"""
Bearer credentials.

`verify` is the only thing the rest of the project relies on: it maps a token
to an active User or raises Unauthenticated. Tokens are HS256 JWTs carrying the
user id in `sub`.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from jose import JWTError, jwt

from core.exceptions import Unauthenticated

logger = logging.getLogger(__name__)


def issue_token(user, lifetime: timedelta | None = None) -> str:
    now = timezone.now()
    lifetime = lifetime or timedelta(minutes=settings.AUTH_TOKEN_LIFETIME_MINUTES)
    claims = {
        "sub": str(user.pk),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(claims, settings.AUTH_TOKEN_SECRET, algorithm=settings.AUTH_TOKEN_ALGORITHM)


def verify(credential):
    """Return the active user behind `credential`; raise Unauthenticated otherwise."""
    if not credential:
        raise Unauthenticated("Authentication error: No token provided")
    try:
        claims = jwt.decode(
            credential, settings.AUTH_TOKEN_SECRET, algorithms=[settings.AUTH_TOKEN_ALGORITHM]
        )
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise Unauthenticated("Authentication error: Invalid token")

    user_id = str(claims.get("sub") or "")
    if not user_id.isdigit():
        raise Unauthenticated("Authentication error: Invalid token")

    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated")
    return user


def credential_from_authorization(header):
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def user_from_authorization(header):
    return verify(credential_from_authorization(header))

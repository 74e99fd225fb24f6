from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import uuid

import jwt

from app.config.settings import settings


class AuthUtils:
    """JWT helpers. Tokens are issued by the main todo API; this service only verifies them."""

    @staticmethod
    def generate_access_token(user_id: str, expires_minutes: int = 30) -> str:
        """Generate an access token for `user_id` (used by tooling and tests)."""
        now = datetime.now(timezone.utc)

        payload = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + timedelta(minutes=expires_minutes),
            "jti": str(uuid.uuid4()),
        }

        return jwt.encode(
            payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode access token"""
        try:
            payload = jwt.decode(
                token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
            )

            # Ensure it's not a refresh token
            if payload.get("type") == "refresh" or not payload.get("sub"):
                return None

            return payload
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @staticmethod
    def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return token.strip()

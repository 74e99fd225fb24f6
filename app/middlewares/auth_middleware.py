from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.config.settings import settings
from app.utils.auth import AuthUtils
from app.utils.errors import AuthenticationError
from app.utils.logging import get_logger
from app.utils.responses import ResponseBuilder

logger = get_logger()


class AuthState:
    """Authentication state to be stored in request.state"""

    def __init__(self, user_id: str, is_authenticated: bool = True):
        self.user_id = user_id
        self.is_authenticated = is_authenticated


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer JWT authentication; the token's `sub` claim is the user id."""

    # Paths that don't require authentication
    EXCLUDED_PATHS = {
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
        f"{settings.API_PREFIX}/health",
    }

    def __init__(self, app, excluded_paths: Optional[set] = None):
        super().__init__(app)
        self.excluded_paths = set(self.EXCLUDED_PATHS)
        if excluded_paths:
            self.excluded_paths.update(excluded_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request through authentication middleware"""
        if self._should_skip_auth(request):
            return await call_next(request)

        try:
            request.state.auth = self._authenticate(request)
        except AuthenticationError as e:
            logger.warning(f"Authentication failed for {request.url.path}: {e.message}")
            return ResponseBuilder.error(
                request=request,
                message=e.message,
                error_code=e.error_code,
                status_code=401,
            )

        return await call_next(request)

    def _should_skip_auth(self, request: Request) -> bool:
        """Check if the request should skip authentication."""
        return request.method == "OPTIONS" or self._is_excluded_path(request.url.path)

    def _is_excluded_path(self, path: str) -> bool:
        """Check if path is excluded from authentication"""
        return any(path.startswith(excluded) for excluded in self.excluded_paths)

    def _authenticate(self, request: Request) -> AuthState:
        token = AuthUtils.extract_bearer_token(request.headers.get("authorization"))
        if not token:
            raise AuthenticationError("No bearer token found", "AUTH_ERROR")

        payload = AuthUtils.verify_access_token(token)
        if not payload:
            raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")

        return AuthState(user_id=str(payload["sub"]))


# Dependency for getting current user from request state
def get_current_user(request: Request) -> AuthState:
    """Dependency to get current authenticated user from request state"""
    auth_state = getattr(request.state, "auth", None)

    if not auth_state or not auth_state.is_authenticated:
        raise AuthenticationError("Not authenticated", "NOT_AUTHENTICATED")

    return auth_state

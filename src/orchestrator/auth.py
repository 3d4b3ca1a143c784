"""Bearer-token authentication for the HTTP gateway.

``AUTH_MODE=jwt`` requires an HS256 token signed with ``JWT_SECRET``;
``AUTH_MODE=none`` lets every request through as an anonymous user.
Health endpoints are never protected.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from shared.config import SecuritySettings
from shared.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified token."""
    user_id: str
    username: str = ""


ANONYMOUS = AuthenticatedUser(user_id="anonymous", username="anonymous")


class AuthMiddleware:
    """
    FastAPI dependency validating bearer tokens.

    Usable directly as ``Depends(auth)``.
    """

    def __init__(self, settings: SecuritySettings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.auth_mode == "jwt"

    def create_token(self, user_id: str, username: str = "", expires_minutes: Optional[int] = None) -> str:
        """Issue a token, for CLI or admin use."""
        now = datetime.utcnow()
        expire = now + timedelta(minutes=expires_minutes or self.settings.token_expire_minutes)
        payload = {
            "sub": user_id,
            "username": username or user_id,
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(payload, self.settings.jwt_secret or "", algorithm=ALGORITHM)

    def verify_token(self, token: str) -> AuthenticatedUser:
        """
        Verify and decode a token.

        Raises:
            HTTPException: If the token is invalid or expired
        """
        try:
            payload = jwt.decode(token, self.settings.jwt_secret or "", algorithms=[ALGORITHM])
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return AuthenticatedUser(user_id=user_id, username=payload.get("username", user_id))

    async def __call__(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
    ) -> AuthenticatedUser:
        if not self.enabled:
            return ANONYMOUS

        if not credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="missing authorization header",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return self.verify_token(credentials.credentials)

"""Authentication middleware for bearer token validation."""

import logging

import jwt

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from chat_serv.config import settings


bearer_scheme = HTTPBearer(auto_error=False)


class AuthMiddleware:
    """Verifies access tokens issued by the auth service."""

    def __init__(self, secret: str | None = None, algorithm: str | None = None):
        self.logger = logging.getLogger("auth-middleware")
        self.logger.setLevel(settings.logging_level)

        self.secret = secret or settings.jwt_access_secret
        self.algorithm = algorithm or settings.jwt_algorithm

    def user_id_from_token(self, token: str | None) -> int | None:
        """Decode token and return user id, None if it is missing or invalid."""

        if not token:
            return None

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])

        except jwt.ExpiredSignatureError:
            self.logger.debug("Rejected expired token")
            return None

        except jwt.InvalidTokenError as e:
            self.logger.debug(f"Rejected invalid token: {e}")
            return None

        # tokens carry the user id in "id", standard issuers use "sub"
        user_id = payload.get("id")
        if user_id is None:
            user_id = payload.get("sub")

        try:
            return int(user_id)
        except (TypeError, ValueError):
            return None

    async def require_auth(
        self,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)
    ) -> int:
        """FastAPI dependency returning the id of the authenticated user."""

        if not credentials:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: no token provided")

        user_id = self.user_id_from_token(credentials.credentials)
        if user_id is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: invalid token")

        return user_id

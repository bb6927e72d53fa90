"""
Credential handling shared by the HTTP routes and the project socket.

Tokens are HS256 JWTs carrying the user's email and id. A token is looked up in
this order: ``token`` cookie, explicit handshake token, ``Authorization: Bearer``.
Logging out revokes the token in Redis until it would have expired anyway.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import bcrypt
import jwt
from fastapi import HTTPException, Request
from redis.asyncio import Redis
from redis.exceptions import RedisError

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def extract_token(
    cookies: Optional[Mapping[str, str]] = None,
    auth_token: Optional[str] = None,
    authorization: Optional[str] = None,
) -> Optional[str]:
    if cookies and cookies.get(TOKEN_COOKIE):
        return cookies[TOKEN_COOKIE]
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
        return token or None
    return None


class TokenService:
    def __init__(self, redis: Optional[Redis] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._redis = redis

    @property
    def ttl_seconds(self) -> int:
        return self.settings.jwt_expires_hours * 60 * 60

    def create_token(self, user: Dict[str, Any]) -> str:
        if not self.settings.jwt_secret:
            raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
        expire = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        payload = {"email": user["email"], "id": user.get("id"), "exp": expire}
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """Return the token claims or raise HTTPException(401)."""
        if not self.settings.jwt_secret:
            raise HTTPException(status_code=401, detail="Authentication is not configured")
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    async def revoke(self, token: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(self._revoked_key(token), "logout", ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("Failed to revoke token: %s", e)

    async def is_revoked(self, token: str) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.exists(self._revoked_key(token)))
        except RedisError as e:
            logger.warning("Failed to check token revocation: %s", e)
            return False

    async def authenticate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise HTTPException(status_code=401, detail="No token provided")
        claims = self.decode_token(token)
        if await self.is_revoked(token):
            raise HTTPException(status_code=401, detail="Token revoked")
        if not claims.get("email"):
            raise HTTPException(status_code=401, detail="Invalid token")
        return claims

    @staticmethod
    def _revoked_key(token: str) -> str:
        return f"revoked:{token}"


async def get_current_user(request: Request) -> Dict[str, Any]:
    """FastAPI dependency resolving the caller from cookie or bearer header."""
    token = extract_token(request.cookies, None, request.headers.get("authorization"))
    service: TokenService = request.app.state.tokens
    claims = await service.authenticate(token)
    request.state.token = token
    return claims

"""Password hashing and access tokens."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from passlib.context import CryptContext

from errors import UnauthorizedError

password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return password_ctx.verify(password, hashed)
    except ValueError:
        # Malformed hash stored for this user.
        return False


@dataclass(frozen=True)
class Claims:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class TokenIssuer:
    """Issues and parses HS256 access tokens carrying the user id and role."""

    algorithm = "HS256"

    def __init__(self, secret: str, expires_min: int = 1440,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.secret = secret
        self.ttl = timedelta(minutes=expires_min)
        self.now = now

    def issue(self, user_id: str, role: str) -> str:
        issued_at = self.now()
        payload = {
            "sub": user_id,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def parse(self, token: str) -> Claims:
        token = (token or "").strip()
        if not token:
            raise UnauthorizedError("missing bearer token")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("token expired")
        except jwt.InvalidTokenError:
            raise UnauthorizedError("invalid token")
        sub = payload.get("sub")
        if not sub:
            raise UnauthorizedError("invalid token")
        return Claims(user_id=str(sub), role=str(payload.get("role", "user")))

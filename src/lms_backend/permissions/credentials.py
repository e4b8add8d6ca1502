"""
Credential collaborators used by the access layer.

Login authentication happens elsewhere; this module only verifies identity
tokens issued by it and hashes/checks the separate escalation password.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from lms_backend.api.exceptions import UnauthorizedException
from lms_backend.settings import settings

logger = logging.getLogger(__name__)


class EscalationCredentialVerifier(ABC):

    @abstractmethod
    def hash(self, password: str) -> str:
        pass

    @abstractmethod
    def verify(self, password: str, hashed: str) -> bool:
        pass


class BcryptCredentialVerifier(EscalationCredentialVerifier):

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds if rounds is not None else settings.ESCALATION_BCRYPT_ROUNDS

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        if not password or not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored escalation password hash is malformed")
            return False


class IdentityVerifier(ABC):
    """Turns a login (identity) token into the authenticated user id."""

    @abstractmethod
    def verify(self, token: str) -> str:
        pass


class JWTIdentityVerifier(IdentityVerifier):

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = secret or settings.ACCESS_TOKEN_SECRET
        self.algorithm = algorithm or settings.ACCESS_TOKEN_ALGORITHM

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Identity token rejected: {e}")
            raise UnauthorizedException("Invalid or expired access token")

    def verify(self, token: str) -> str:
        claims = self.decode(token)
        if claims.get("type") == "admin":
            raise UnauthorizedException("Admin tokens cannot be used as identity tokens")

        user_id = claims.get("sub")
        if not user_id:
            raise UnauthorizedException("Access token has no subject")
        return user_id

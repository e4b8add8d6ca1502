import os
import threading


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


class BackendSettings:
    _instance = None
    _lock = threading.Lock()

    def __init__(self):
        self.DEBUG_MODE = os.environ.get("DEBUG_MODE", "development")

        # Token verification
        self.ACCESS_TOKEN_SECRET = os.environ.get("ACCESS_TOKEN_SECRET", "change-me-access")
        self.ACCESS_TOKEN_ALGORITHM = os.environ.get("ACCESS_TOKEN_ALGORITHM", "HS256")
        # Admin tokens are signed with their own secret so a leaked access secret is not enough
        self.ADMIN_TOKEN_SECRET = os.environ.get("ADMIN_TOKEN_SECRET", "change-me-admin")
        self.ADMIN_TOKEN_ALGORITHM = os.environ.get("ADMIN_TOKEN_ALGORITHM", "HS256")

        # Escalation sessions (seconds)
        self.ADMIN_SESSION_TIMEOUT = _env_int("ADMIN_SESSION_TIMEOUT", 900)
        self.ADMIN_SESSION_MAX_LIFETIME = _env_int("ADMIN_SESSION_MAX_LIFETIME", 3600)
        self.ESCALATION_BCRYPT_ROUNDS = _env_int("ESCALATION_BCRYPT_ROUNDS", 12)

        # Cache TTLs (seconds)
        self.PERMISSION_CACHE_TTL = _env_int("PERMISSION_CACHE_TTL", 900)
        self.HIERARCHY_CACHE_TTL = _env_int("HIERARCHY_CACHE_TTL", 3600)
        self.ROLE_DEFINITION_TTL = _env_int("ROLE_DEFINITION_TTL", 3600)

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(BackendSettings, cls).__new__(cls)
        return cls._instance

settings = BackendSettings()

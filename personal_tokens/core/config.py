# personal_tokens/core/config.py
import os
from functools import lru_cache

from cryptography.fernet import Fernet
from dotenv import load_dotenv

from personal_tokens.core.errors import ConfigurationError


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In prod, env vars come from the deployment.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            load_dotenv()

        # ----------------------------
        # Database
        # ----------------------------
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./personal_tokens.db").strip()

        # ----------------------------
        # Personal tokens
        # ----------------------------
        # Fernet key used both for the opaque wire token and for payload-at-rest encryption.
        self.PERSONAL_TOKEN_KEY = os.getenv("PERSONAL_TOKEN_KEY", "").strip()
        # Retired keys: still accepted for decryption, never used to encrypt.
        self.PERSONAL_TOKEN_PREVIOUS_KEYS = parse_csv(os.getenv("PERSONAL_TOKEN_PREVIOUS_KEYS"))

        self.PERSONAL_TOKEN_EXPIRE_MINUTES = int(os.getenv("PERSONAL_TOKEN_EXPIRE_MINUTES", "1440"))
        self.PERSONAL_TOKEN_LENGTH = int(os.getenv("PERSONAL_TOKEN_LENGTH", "40"))
        self.PERSONAL_TOKEN_HASH_SCHEME = os.getenv("PERSONAL_TOKEN_HASH_SCHEME", "argon2").strip().lower()

        # Final: fail fast in prod
        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.PERSONAL_TOKEN_KEY:
            missing.append("PERSONAL_TOKEN_KEY")
        if not os.getenv("DATABASE_URL"):
            missing.append("DATABASE_URL")

        if self.DATABASE_URL.startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must not point at sqlite in prod")

        if self.PERSONAL_TOKEN_EXPIRE_MINUTES <= 0:
            raise RuntimeError("PERSONAL_TOKEN_EXPIRE_MINUTES must be positive")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def token_keys(self) -> list[str]:
        """Active key first, then previous keys (deduplicated)."""
        keys = [self.PERSONAL_TOKEN_KEY] + self.PERSONAL_TOKEN_PREVIOUS_KEYS
        return merge_unique([k for k in keys if k])


settings = Settings()


@lru_cache(maxsize=4)
def _check_fernet_key(key: str) -> None:
    try:
        Fernet(key)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("PERSONAL_TOKEN_KEY must be a 32-byte url-safe base64 Fernet key") from exc


def require_token_key() -> None:
    key = settings.PERSONAL_TOKEN_KEY
    if not key:
        raise ConfigurationError("PERSONAL_TOKEN_KEY must be set")
    _check_fernet_key(key)

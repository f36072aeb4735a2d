import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Explicitly load .env from project root (parent of qrhub/)
ENV_PATH = Path(__file__).parent.parent / ".env"


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    environment: str
    database_url: str
    public_base_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    lockout_max_attempts: int = 5
    lockout_minutes: int = 30
    bcrypt_rounds: int = 12
    code_allocation_attempts: int = 3
    hit_counter_atomic: bool = True
    upload_dir: Path = Path("uploads/logos")
    max_logo_bytes: int = 2 * 1024 * 1024

    @property
    def production(self) -> bool:
        return self.environment == "prod"

    @property
    def lock_duration(self) -> timedelta:
        return timedelta(minutes=self.lockout_minutes)

    def link_url(self, code: str) -> str:
        return f"{self.public_base_url}/r/{code}"

    def portal_url(self, slug: str) -> str:
        return f"{self.public_base_url}/wifi/{slug}"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(ENV_PATH)
        environment = os.getenv("ENVIRONMENT", "dev")

        secret_key = os.getenv("SECRET_KEY")
        if not secret_key:
            raise RuntimeError("SECRET_KEY is not set")

        # Dev: SQLite (zero config), Prod: PostgreSQL
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            if environment == "prod":
                raise RuntimeError("DATABASE_URL must be set in production")
            database_url = f"sqlite:///{Path(__file__).parent.parent / 'qrhub_dev.db'}"

        return cls(
            environment=environment,
            database_url=database_url,
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            secret_key=secret_key,
            algorithm=os.getenv("ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60)),
            lockout_max_attempts=int(os.getenv("LOCKOUT_MAX_ATTEMPTS", 5)),
            lockout_minutes=int(os.getenv("LOCKOUT_MINUTES", 30)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 12)),
            code_allocation_attempts=int(os.getenv("CODE_ALLOCATION_ATTEMPTS", 3)),
            hit_counter_atomic=_flag("HIT_COUNTER_ATOMIC", True),
            upload_dir=Path(os.getenv("UPLOAD_DIR", "uploads/logos")),
            max_logo_bytes=int(os.getenv("MAX_LOGO_BYTES", 2 * 1024 * 1024)),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()

from dataclasses import dataclass
from functools import lru_cache
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: str
    transaction_timeout_seconds: int
    allow_negative_stock: bool
    sequence_pad_length: int
    app_url: str
    secret_key: str
    jwt_algorithm: str
    log_level: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite+pysqlite:///./stockledger.db"),
        transaction_timeout_seconds=_env_int("STOCKLEDGER_TRANSACTION_TIMEOUT_SECONDS", 30),
        allow_negative_stock=_env_bool("STOCKLEDGER_ALLOW_NEGATIVE_STOCK", False),
        sequence_pad_length=_env_int("STOCKLEDGER_SEQUENCE_PAD_LENGTH", 4),
        app_url=os.getenv("STOCKLEDGER_APP_URL", "http://localhost:3000").rstrip("/"),
        secret_key=os.getenv("STOCKLEDGER_SECRET_KEY", "stockledger-dev-secret"),
        jwt_algorithm=os.getenv("STOCKLEDGER_JWT_ALGORITHM", "HS256"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

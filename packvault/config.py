import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{(BASE_DIR / 'packvault.db').as_posix()}"
    token_secret: str = "dev-secret"
    token_ttl_seconds: int = 86400
    admin_secret: str = "adminpass"
    # Share of a card's locked pull value paid back on refund.
    refund_rate: Decimal = Decimal("1.00")
    # Plinko/Wheel outcomes reported by the client are used as-is when on.
    trust_client_results: bool = True
    plinko_default_price: Decimal = Decimal("10.00")
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
    )

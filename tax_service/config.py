from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    rates_path: str
    allowed_origins: list[str]
    host: str
    port: int
    log_level: str


def load_settings() -> Settings:
    return Settings(
        rates_path=os.getenv("TAX_RATES_PATH", "data/tax_rates.csv"),
        allowed_origins=_parse_csv(
            os.getenv("TAX_ALLOWED_ORIGINS", "https://voteforme-md.github.io")
        ),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_parse_int(os.getenv("PORT"), 3000),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )

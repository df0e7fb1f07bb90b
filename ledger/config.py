import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _int_list(raw: str) -> list[int]:
    return [int(part) for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "").rstrip("/")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    LEDGER_STORE: str = os.getenv("LEDGER_STORE", "memory")

    KIOSK_SYNC_TOKEN: str = os.getenv("KIOSK_SYNC_TOKEN", "")
    BULK_SYNC_MAX_ITEMS: int = int(os.getenv("BULK_SYNC_MAX_ITEMS", "100"))

    PRESET_DEFAULTS: list[int] = field(
        default_factory=lambda: _int_list(os.getenv("PRESET_DEFAULTS", "5,10,15,20,25,50"))
    )
    PRESET_THRESHOLD: int = int(os.getenv("PRESET_THRESHOLD", "5"))
    PRESET_MAX: int = int(os.getenv("PRESET_MAX", "9"))
    PRESET_LOOKBACK: int = int(os.getenv("PRESET_LOOKBACK", "100"))

    GOOGLE_SHEETS_SHEET_ID: str = os.getenv("GOOGLE_SHEETS_SHEET_ID", "")
    GOOGLE_SHEETS_CLIENT_EMAIL: str = os.getenv("GOOGLE_SHEETS_CLIENT_EMAIL", "")
    GOOGLE_SHEETS_PRIVATE_KEY: str = os.getenv("GOOGLE_SHEETS_PRIVATE_KEY", "")
    SHEETS_TIMEZONE: str = os.getenv("SHEETS_TIMEZONE", "Asia/Jerusalem")

    SIDE_EFFECT_WORKERS: int = int(os.getenv("SIDE_EFFECT_WORKERS", "4"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class QueueSettings:
    STORAGE_KEY: str = os.getenv("QUEUE_STORAGE_KEY", "pdca_offline_transactions")
    STORAGE_PATH: str = os.getenv("QUEUE_STORAGE_PATH", "./offline_queue.json")
    API_BASE_URL: str = os.getenv("PDCA_API_URL", "http://localhost:8000").rstrip("/")

    DELIVERY_DELAY_SECONDS: float = float(os.getenv("QUEUE_DELIVERY_DELAY_SECONDS", "0.2"))
    RECONNECT_DELAY_SECONDS: float = float(os.getenv("QUEUE_RECONNECT_DELAY_SECONDS", "1"))
    DRAIN_INTERVAL_SECONDS: float = float(os.getenv("QUEUE_DRAIN_INTERVAL_SECONDS", "30"))
    SUBMIT_TIMEOUT_SECONDS: float = float(os.getenv("QUEUE_SUBMIT_TIMEOUT_SECONDS", "15"))

    BACKOFF_BASE_SECONDS: float = float(os.getenv("QUEUE_BACKOFF_BASE_SECONDS", "2"))
    BACKOFF_FACTOR: float = float(os.getenv("QUEUE_BACKOFF_FACTOR", "2"))
    BACKOFF_CAP_SECONDS: float = float(os.getenv("QUEUE_BACKOFF_CAP_SECONDS", "300"))
    MAX_INFLIGHT_AGE_SECONDS: float = float(os.getenv("QUEUE_MAX_INFLIGHT_AGE_SECONDS", str(24 * 3600)))


queue_settings = QueueSettings()

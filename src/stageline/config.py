import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
DOTENV_PATH = Path.cwd() / ".env"
load_dotenv(dotenv_path=DOTENV_PATH, override=False)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


class Settings:
    # Reasoning service
    SERVICE_URL: str
    TIMEOUT: float
    MAX_ATTEMPTS: int

    # API-key store
    DATA_DIR: Path

    # Logging
    LOG_LEVEL: str

    def __init__(self):
        self.SERVICE_URL = os.getenv("STAGELINE_SERVICE_URL", "http://localhost:3001/api/transform").strip()
        self.TIMEOUT = _env_float("STAGELINE_TIMEOUT", 30.0)
        self.MAX_ATTEMPTS = _env_int("STAGELINE_MAX_ATTEMPTS", 3)
        self.DATA_DIR = Path(os.getenv("STAGELINE_DATA_DIR", "data").strip() or "data")
        self.LOG_LEVEL = os.getenv("STAGELINE_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"

    def validate(self):
        if not self.SERVICE_URL:
            raise RuntimeError("STAGELINE_SERVICE_URL is empty. Set it to the reasoning-service transform endpoint.")
        if self.MAX_ATTEMPTS < 1:
            raise RuntimeError(f"STAGELINE_MAX_ATTEMPTS must be at least 1, got {self.MAX_ATTEMPTS}")


settings = Settings()
settings.validate()

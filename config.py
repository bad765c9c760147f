from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from engine import Logging

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent / ".env")


@dataclass(frozen=True)
class AppConfig:
    logging: str = os.getenv("SYNC_LOGGING", "trace")
    response_timeout: float = float(os.getenv("RESPONSE_TIMEOUT", "10"))
    max_passes: int = int(os.getenv("SYNC_MAX_PASSES", "100"))
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "5000"))
    base_url: str = os.getenv("REQUESTING_BASE_URL", "/api")

    @property
    def logging_level(self) -> Logging:
        try:
            return Logging[self.logging.strip().upper()]
        except KeyError:
            raise ValueError(f"SYNC_LOGGING must be one of off, trace, verbose; got {self.logging!r}") from None


DEFAULT_CONFIG = AppConfig()

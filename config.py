# config.py

import os
from dataclasses import dataclass, field
from typing import List

from pairing import DEFAULT_GREETING


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 4000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    chat_max_length: int = 2000
    reaper_interval: float = 10.0
    waiting_ttl: float = 0.0
    strict_signaling: bool = False
    greeting: str = DEFAULT_GREETING
    log_level: str = "INFO"

    def __post_init__(self):
        if self.chat_max_length < 1:
            raise ValueError(f"CHAT_MAX_LENGTH must be at least 1, got {self.chat_max_length}")
        if self.reaper_interval < 0:
            raise ValueError(f"REAPER_INTERVAL must not be negative, got {self.reaper_interval}")
        if self.waiting_ttl < 0:
            raise ValueError(f"WAITING_TTL must not be negative, got {self.waiting_ttl}")
        if not 0 < self.port < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {self.port}")

    @classmethod
    def from_env(cls) -> "Settings":
        # int()/float() raise ValueError on garbage, which aborts startup
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "4000")),
            cors_origins=_env_list("CORS_ORIGINS", "*"),
            chat_max_length=int(os.getenv("CHAT_MAX_LENGTH", "2000")),
            reaper_interval=float(os.getenv("REAPER_INTERVAL", "10")),
            waiting_ttl=float(os.getenv("WAITING_TTL", "0")),
            strict_signaling=_env_bool("STRICT_SIGNALING", False),
            greeting=os.getenv("GREETING", DEFAULT_GREETING),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


settings = Settings.from_env()

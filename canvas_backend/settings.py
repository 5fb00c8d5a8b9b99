"""
Backend configuration from environment variables.
"""

import os
from dataclasses import dataclass, field

from .containment import DEFAULT_COOLDOWN, DEFAULT_SETTLE_DELAY
from .url_sync import DEFAULT_URL_PARAM, DEFAULT_WRITE_DELAY

DEFAULT_CORS_ORIGINS = ["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"]


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class Settings:
    url_param: str = DEFAULT_URL_PARAM
    write_delay: float = DEFAULT_WRITE_DELAY
    settle_delay: float = DEFAULT_SETTLE_DELAY
    cooldown: float = DEFAULT_COOLDOWN
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"
    base_url: str = "http://localhost:5173/"
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls) -> "Settings":
        """Read INFRACANVAS_* variables, falling back to the defaults."""
        origins = os.environ.get("INFRACANVAS_CORS_ORIGINS")
        return cls(
            url_param=os.environ.get("INFRACANVAS_URL_PARAM", DEFAULT_URL_PARAM),
            write_delay=_float_env("INFRACANVAS_WRITE_DELAY", DEFAULT_WRITE_DELAY),
            settle_delay=_float_env("INFRACANVAS_SETTLE_DELAY", DEFAULT_SETTLE_DELAY),
            cooldown=_float_env("INFRACANVAS_COOLDOWN", DEFAULT_COOLDOWN),
            host=os.environ.get("INFRACANVAS_HOST", "127.0.0.1"),
            port=int(os.environ.get("INFRACANVAS_PORT", "8765")),
            log_level=os.environ.get("INFRACANVAS_LOG_LEVEL", "INFO"),
            base_url=os.environ.get("INFRACANVAS_BASE_URL", "http://localhost:5173/"),
            cors_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins else list(DEFAULT_CORS_ORIGINS)
            ),
        )

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, Field


class Settings(BaseModel):
    messaging_host: str = "wa.me"
    min_phone_digits: int = Field(default=9, ge=1)
    constancy_prefix: str = "RET"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {
            "messaging_host": env.get("RETENES_MESSAGING_HOST"),
            "min_phone_digits": env.get("RETENES_MIN_PHONE_DIGITS"),
            "constancy_prefix": env.get("RETENES_CONSTANCY_PREFIX"),
            "log_level": env.get("RETENES_LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v})


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

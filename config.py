import logging
import os
import secrets
from functools import lru_cache
from typing import List, Tuple


DEFAULT_BADGE_TIERS = "10:Bronze Donor,50:Silver Donor,100:Gold Donor"


def parse_badge_tiers(raw: str) -> List[Tuple[int, str]]:
    """
    Parse "10:Bronze Donor,50:Silver Donor" into [(10, "Bronze Donor"), ...],
    sorted by threshold.
    """
    tiers = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        threshold, _, name = chunk.partition(":")
        if not name:
            raise ValueError(f"Invalid badge tier: {chunk!r}")
        tiers.append((int(threshold), name.strip()))
    return sorted(tiers)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        # A random key invalidates every token on restart; set SECRET_KEY in production.
        self.secret_key = os.getenv("SECRET_KEY") or secrets.token_hex(32)
        self.token_max_age_seconds = int(
            os.getenv("TOKEN_MAX_AGE_SECONDS", str(60 * 60 * 24 * 7))
        )

        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./givebridge.db")
        self.sql_echo = _env_bool("SQL_ECHO")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
        # Admin accounts are normally provisioned out of band
        self.allow_admin_registration = _env_bool("ALLOW_ADMIN_REGISTRATION")

        self.donor_badge_tiers = parse_badge_tiers(
            os.getenv("DONOR_BADGE_TIERS", DEFAULT_BADGE_TIERS)
        )
        self.people_served_per_unit = int(os.getenv("PEOPLE_SERVED_PER_UNIT", "3"))

        self.otp_ttl_seconds = int(os.getenv("OTP_TTL_SECONDS", "300"))
        self.otp_max_attempts = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
        self.otp_rate_limit = int(os.getenv("OTP_RATE_LIMIT", "3"))
        self.otp_rate_window_seconds = int(os.getenv("OTP_RATE_WINDOW_SECONDS", "900"))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

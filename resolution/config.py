"""Policy configuration for matching and the review queue.

Values come from RESOLUTION_* environment variables (a .env file is loaded
first), falling back to the defaults below:

  RESOLUTION_AUTO_RESOLVE_THRESHOLD   0.97
  RESOLUTION_FUZZY_FLOOR              0.6
  RESOLUTION_FUZZY_CEILING            0.9
  RESOLUTION_TITLE_CEILING            0.75
  RESOLUTION_DUPLICATE_FLOOR          0.85
  RESOLUTION_FREE_EMAIL_DOMAINS       comma list, replaces the default denylist
  RESOLUTION_INTERNAL_DOMAINS         comma list of the tenant's own domains
  RESOLUTION_RESOLVED_WINDOW_HOURS    24
"""
import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

DEFAULT_FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "aol.com",
    "icloud.com",
    "me.com",
    "mail.com",
    "protonmail.com",
    "proton.me",
    "live.com",
    "msn.com",
    "yandex.com",
    "zoho.com",
    "fastmail.com",
    "tutanota.com",
    "hey.com",
    "gmx.com",
})


class ResolutionSettings(BaseModel):
    """Tunable policy constants. Thresholds are not derived from data."""

    model_config = {"frozen": True}

    auto_resolve_threshold: float = Field(default=0.97, ge=0.0, le=1.0)
    fuzzy_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    fuzzy_ceiling: float = Field(default=0.9, gt=0.0, lt=1.0)
    title_ceiling: float = Field(default=0.75, gt=0.0, lt=1.0)
    match_call_titles: bool = True
    duplicate_similarity_floor: float = Field(default=0.85, ge=0.0, le=1.0)
    free_email_domains: frozenset[str] = DEFAULT_FREE_EMAIL_DOMAINS
    internal_domains: frozenset[str] = frozenset()
    max_batch_size: int = Field(default=100, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=100)
    max_search_limit: int = Field(default=50, ge=1, le=50)
    queue_suggestion_limit: int = Field(default=3, ge=1)
    resolved_window_hours: int = Field(default=24, ge=1)

    @model_validator(mode="after")
    def _fuzzy_never_reaches_auto(self) -> "ResolutionSettings":
        # Fuzzy matches must stay distinguishable from alias hits and must
        # never qualify for auto-resolution on their own.
        if self.fuzzy_ceiling >= self.auto_resolve_threshold:
            raise ValueError("fuzzy_ceiling must be below auto_resolve_threshold")
        if self.title_ceiling > self.fuzzy_ceiling:
            raise ValueError("title_ceiling must not exceed fuzzy_ceiling")
        return self

    @classmethod
    def from_env(cls) -> "ResolutionSettings":
        load_dotenv()
        values: dict = {}
        floats = {
            "auto_resolve_threshold": "RESOLUTION_AUTO_RESOLVE_THRESHOLD",
            "fuzzy_floor": "RESOLUTION_FUZZY_FLOOR",
            "fuzzy_ceiling": "RESOLUTION_FUZZY_CEILING",
            "title_ceiling": "RESOLUTION_TITLE_CEILING",
            "duplicate_similarity_floor": "RESOLUTION_DUPLICATE_FLOOR",
        }
        for field, env_name in floats.items():
            if os.environ.get(env_name):
                values[field] = float(os.environ[env_name])
        if os.environ.get("RESOLUTION_RESOLVED_WINDOW_HOURS"):
            values["resolved_window_hours"] = int(os.environ["RESOLUTION_RESOLVED_WINDOW_HOURS"])
        if os.environ.get("RESOLUTION_FREE_EMAIL_DOMAINS"):
            values["free_email_domains"] = _domain_set(os.environ["RESOLUTION_FREE_EMAIL_DOMAINS"])
        if os.environ.get("RESOLUTION_INTERNAL_DOMAINS"):
            values["internal_domains"] = _domain_set(os.environ["RESOLUTION_INTERNAL_DOMAINS"])
        return cls(**values)


def _domain_set(raw: str) -> frozenset[str]:
    return frozenset(d.strip().lower() for d in raw.split(",") if d.strip())


@lru_cache
def get_settings() -> ResolutionSettings:
    """Process-wide settings, read from the environment once."""
    return ResolutionSettings.from_env()

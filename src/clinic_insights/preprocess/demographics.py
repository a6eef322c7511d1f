from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Sequence

import pandas as pd

from clinic_insights.analytics.age_bins import compute_age
from clinic_insights.config import CategoriesConfig

GENDER_MAP = {
    "MALE": "Male",
    "M": "Male",
    "FEMALE": "Female",
    "F": "Female",
}
OTHER_CHANNEL = "Other"
FOLLOW_UP_VALUES = frozenset({"follow up", "follow-up", "followup", "true", "yes", "1"})
WHITESPACE_RE = re.compile(r"\s+")


def normalize_gender(values: pd.Series) -> pd.Series:
    gender = values.fillna("").astype(str).str.strip().str.upper()
    return gender.map(GENDER_MAP).fillna("Unknown")


def area_of(address: Any) -> str | None:
    """First comma-delimited token of a free-text address."""
    if address is None or (not isinstance(address, str) and pd.isna(address)):
        return None
    area = WHITESPACE_RE.sub(" ", str(address).split(",")[0]).strip()
    return area or None


def normalize_discovery_channel(values: pd.Series, channels: Sequence[str]) -> pd.Series:
    lookup = {channel.casefold(): channel for channel in channels}

    def _normalize(value: Any) -> str:
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return OTHER_CHANNEL
        return lookup.get(str(value).strip().casefold(), OTHER_CHANNEL)

    return values.map(_normalize)


def normalize_follow_up(values: pd.Series) -> pd.Series:
    def _normalize(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return False
        return str(value).strip().lower() in FOLLOW_UP_VALUES

    return values.map(_normalize).astype(bool)


def add_demographic_features(
    df: pd.DataFrame,
    categories: CategoriesConfig,
    now: datetime | pd.Timestamp,
) -> pd.DataFrame:
    working = df.copy()
    working["gender"] = normalize_gender(working["gender"])
    working["area"] = working["address"].map(area_of)
    working["discovery_channel"] = normalize_discovery_channel(
        working["discovery_channel"],
        categories.discovery_channels,
    )
    working["is_follow_up"] = normalize_follow_up(working["is_follow_up"])
    working["age"] = pd.to_numeric(
        working["date_of_birth"].map(lambda value: compute_age(value, now)),
        errors="coerce",
    )
    return working

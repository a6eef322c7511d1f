"""Configurable age bins: classification, ordering, and the editable working copy.

Bins are allowed to overlap. ``classify`` returns the label of every bin whose
interval contains the age, so one patient can land in several bins and the
cross-tab built on top counts that visit once per matching bin.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, Literal, Mapping, Sequence

import pandas as pd

from clinic_insights.errors import InvalidBinConfigurationError

if TYPE_CHECKING:
    from clinic_insights.io.age_settings import AgeSettingsStore

LOGGER = logging.getLogger(__name__)

BELOW: Literal["below"] = "below"
ABOVE: Literal["above"] = "above"
ALL_DOCTORS = "all"
DAYS_PER_MONTH = 30.44

# Persisted descriptors use the dashboard's "<" / ">" markers.
_BELOW_TOKENS = frozenset({"<", "below"})
_ABOVE_TOKENS = frozenset({">", "above"})

BinStart = float | Literal["below"]
BinEnd = float | Literal["above"]


def _format_bound(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


@dataclass(frozen=True)
class AgeBin:
    id: str
    start: BinStart
    end: BinEnd

    @property
    def is_below(self) -> bool:
        return self.start == BELOW

    @property
    def is_above(self) -> bool:
        return self.end == ABOVE

    @property
    def label(self) -> str:
        if self.is_below:
            end = ">" if self.is_above else _format_bound(self.end)
            return f"<{end}"
        if self.is_above:
            return f"{_format_bound(self.start)}>"
        return f"{_format_bound(self.start)}-{_format_bound(self.end)}"

    def contains(self, age: float) -> bool:
        if self.is_below:
            return self.is_above or age < float(self.end)
        if self.is_above:
            return age >= float(self.start)
        return float(self.start) <= age < float(self.end)

    def to_descriptor(self) -> dict[str, str]:
        return {
            "id": self.id,
            "start": "<" if self.is_below else _format_bound(self.start),
            "end": ">" if self.is_above else _format_bound(self.end),
        }


@dataclass(frozen=True)
class AgeBinScope:
    hospital_id: str
    doctor_id: str | None = None

    @property
    def key(self) -> str:
        if not self.doctor_id or self.doctor_id == ALL_DOCTORS:
            return ALL_DOCTORS
        return str(self.doctor_id)


DEFAULT_AGE_BINS: tuple[AgeBin, ...] = (
    AgeBin("bin-1", BELOW, 20.0),
    AgeBin("bin-2", 20.0, 25.0),
    AgeBin("bin-3", 25.0, 30.0),
    AgeBin("bin-4", 30.0, 35.0),
    AgeBin("bin-5", 35.0, 40.0),
    AgeBin("bin-6", 40.0, 45.0),
    AgeBin("bin-7", 45.0, 50.0),
    AgeBin("bin-8", 50.0, ABOVE),
)


def classify(age: float | None, bins: Sequence[AgeBin]) -> list[str]:
    if age is None or (isinstance(age, float) and math.isnan(age)):
        return []
    return [age_bin.label for age_bin in bins if age_bin.contains(float(age))]


def _sort_rank(age_bin: AgeBin) -> tuple[int, float]:
    if age_bin.is_below:
        return (0, 0.0)
    if age_bin.is_above:
        return (2, 0.0)
    return (1, float(age_bin.start))


def sort_bins(bins: Iterable[AgeBin]) -> list[AgeBin]:
    """Stable order: the open-below bin first, the open-above bin last, others by start."""
    return sorted(bins, key=_sort_rank)


def compute_age(date_of_birth: Any, now: datetime | pd.Timestamp) -> float | None:
    """Whole years since birth; under one year, months / 12."""
    if date_of_birth is None:
        return None
    birth = pd.to_datetime(date_of_birth, errors="coerce")
    if pd.isna(birth):
        return None
    today = pd.Timestamp(now)
    birth_date = birth.date()
    today_date = today.date()
    if birth_date > today_date:
        return None

    years = today_date.year - birth_date.year
    if (today_date.month, today_date.day) < (birth_date.month, birth_date.day):
        years -= 1
    if years == 0:
        months = math.floor((today_date - birth_date).days / DAYS_PER_MONTH)
        return months / 12
    return float(years)


def ages_of(df: pd.DataFrame, now: datetime | pd.Timestamp) -> pd.Series:
    if "age" in df.columns:
        return pd.to_numeric(df["age"], errors="coerce")
    if df.empty or "date_of_birth" not in df.columns:
        return pd.Series(float("nan"), index=df.index, dtype="float64")
    ages = df["date_of_birth"].map(lambda value: compute_age(value, now))
    return pd.to_numeric(ages, errors="coerce")


def age_group_labels(
    df: pd.DataFrame,
    bins: Sequence[AgeBin],
    now: datetime | pd.Timestamp,
    *,
    unknown_label: str | None = None,
) -> pd.Series:
    """Per-visit list of matching bin labels, usable as a cross-tab or ranking key."""
    ages = ages_of(df, now)

    def _labels(age: float) -> list[str]:
        if pd.isna(age):
            return [unknown_label] if unknown_label else []
        return classify(float(age), bins)

    return ages.map(_labels).astype(object)


def _parse_start(raw: Any, index: int) -> BinStart:
    if isinstance(raw, str) and raw.strip().lower() in _BELOW_TOKENS:
        return BELOW
    return _parse_number(raw, index=index, field_name="start")


def _parse_end(raw: Any, index: int) -> BinEnd:
    if isinstance(raw, str) and raw.strip().lower() in _ABOVE_TOKENS:
        return ABOVE
    return _parse_number(raw, index=index, field_name="end")


def _parse_number(raw: Any, *, index: int, field_name: str) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidBinConfigurationError(
            f"age bin #{index + 1} has unparsable {field_name}: {raw!r}"
        ) from exc
    if not math.isfinite(value):
        raise InvalidBinConfigurationError(
            f"age bin #{index + 1} has non-finite {field_name}: {raw!r}"
        )
    return value


def parse_bins(payload: Any) -> list[AgeBin]:
    """Validate persisted ``{id, start, end}`` descriptors into sorted bins."""
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        raise InvalidBinConfigurationError("age bin configuration must be a list")
    if not payload:
        raise InvalidBinConfigurationError("age bin configuration is empty")

    bins: list[AgeBin] = []
    for index, descriptor in enumerate(payload):
        if not isinstance(descriptor, Mapping):
            raise InvalidBinConfigurationError(f"age bin #{index + 1} must be an object")
        if "start" not in descriptor or "end" not in descriptor:
            raise InvalidBinConfigurationError(f"age bin #{index + 1} needs start and end")
        raw_id = str(descriptor.get("id") or "")
        bin_id = raw_id if raw_id.startswith("bin-") else f"bin-{index + 1}"
        bins.append(
            AgeBin(
                id=bin_id,
                start=_parse_start(descriptor["start"], index),
                end=_parse_end(descriptor["end"], index),
            )
        )
    return sort_bins(bins)


def serialize_bins(bins: Iterable[AgeBin]) -> list[dict[str, str]]:
    return [age_bin.to_descriptor() for age_bin in bins]


@dataclass(frozen=True)
class AgeBinLoadResult:
    bins: list[AgeBin]
    source: Literal["scope", "all", "default"]
    warnings: tuple[str, ...] = ()


def resolve_scope_bins(settings: Mapping[str, Any] | None, scope: AgeBinScope) -> AgeBinLoadResult:
    """Pick the scope's bins from a persisted settings map, falling back to defaults."""
    if not settings:
        return AgeBinLoadResult(bins=sort_bins(DEFAULT_AGE_BINS), source="default")

    candidates: list[tuple[str, Literal["scope", "all"]]] = [(scope.key, "scope")]
    if scope.key != ALL_DOCTORS:
        candidates.append((ALL_DOCTORS, "all"))

    for key, source in candidates:
        if key not in settings:
            continue
        try:
            bins = parse_bins(settings[key])
        except InvalidBinConfigurationError as exc:
            message = f"age settings for '{key}' are invalid, using default bins: {exc}"
            LOGGER.warning(message)
            return AgeBinLoadResult(
                bins=sort_bins(DEFAULT_AGE_BINS),
                source="default",
                warnings=(message,),
            )
        return AgeBinLoadResult(bins=bins, source="all" if key == ALL_DOCTORS else source)
    return AgeBinLoadResult(bins=sort_bins(DEFAULT_AGE_BINS), source="default")


def load_age_bins(store: AgeSettingsStore, scope: AgeBinScope) -> AgeBinLoadResult:
    try:
        settings = store.read_settings(scope.hospital_id)
    except InvalidBinConfigurationError as exc:
        message = f"age settings could not be loaded, using default bins: {exc}"
        LOGGER.warning(message)
        return AgeBinLoadResult(
            bins=sort_bins(DEFAULT_AGE_BINS),
            source="default",
            warnings=(message,),
        )
    return resolve_scope_bins(settings, scope)


def _numeric_id(bin_id: str) -> int | None:
    suffix = bin_id.replace("bin-", "", 1)
    return int(suffix) if suffix.isdigit() else None


@dataclass
class AgeBinEditor:
    """Working copy of a bin set; nothing is persisted until ``commit``."""

    bins: list[AgeBin] = field(default_factory=lambda: sort_bins(DEFAULT_AGE_BINS))
    dirty: bool = False

    def __post_init__(self) -> None:
        self.bins = sort_bins(self.bins)

    def add_bin(self, start: BinStart = 0.0, end: BinEnd = 10.0) -> AgeBin:
        max_id = max(
            (number for number in (_numeric_id(b.id) for b in self.bins) if number is not None),
            default=0,
        )
        new_bin = AgeBin(id=f"bin-{max_id + 1}", start=start, end=end)
        self.bins = sort_bins([*self.bins, new_bin])
        self.dirty = True
        return new_bin

    def upsert_bin(self, age_bin: AgeBin) -> None:
        replaced = False
        updated: list[AgeBin] = []
        for existing in self.bins:
            if existing.id == age_bin.id:
                updated.append(age_bin)
                replaced = True
            else:
                updated.append(existing)
        if not replaced:
            updated.append(age_bin)
        self.bins = sort_bins(updated)
        self.dirty = True

    def update_bound(self, bin_id: str, field_name: Literal["start", "end"], raw: Any) -> AgeBin:
        current = next((b for b in self.bins if b.id == bin_id), None)
        if current is None:
            raise KeyError(bin_id)
        if field_name == "start":
            updated = replace(current, start=_parse_start(raw, 0))
        else:
            updated = replace(current, end=_parse_end(raw, 0))
        self.upsert_bin(updated)
        return updated

    def remove_bin(self, bin_id: str) -> None:
        remaining = [b for b in self.bins if b.id != bin_id]
        if len(remaining) == len(self.bins):
            raise KeyError(bin_id)
        self.bins = remaining
        self.dirty = True

    def commit(
        self,
        store: AgeSettingsStore,
        scope: AgeBinScope,
        on_commit: Callable[[list[AgeBin]], None] | None = None,
    ) -> list[AgeBin]:
        if not self.bins:
            raise InvalidBinConfigurationError("cannot save an empty age bin set")
        committed = sort_bins(self.bins)
        store.merge_scope(scope.hospital_id, scope.key, serialize_bins(committed))
        LOGGER.info(
            "Saved %d age bins for hospital=%s scope=%s",
            len(committed),
            scope.hospital_id,
            scope.key,
        )
        self.bins = committed
        self.dirty = False
        if on_commit is not None:
            on_commit(list(committed))
        return list(committed)

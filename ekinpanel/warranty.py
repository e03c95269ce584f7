from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union

from ekinpanel.models import Asset, coerce_date


DUE_THRESHOLDS = (7, 15, 30, 60)
DEFAULT_DUE_DAYS = 30

DateLike = Union[date, datetime, str, None]


class WarrantyBucket(str, Enum):
    NO_DATE = "NODATE"
    EXPIRED = "EXPIRED"
    DUE_SOON = "DUE"
    ACTIVE = "ACTIVE"


BUCKET_LABELS = {
    WarrantyBucket.NO_DATE: "Tarih Yok",
    WarrantyBucket.EXPIRED: "Garanti Bitti",
    WarrantyBucket.DUE_SOON: "{due} Gün İçinde",
    WarrantyBucket.ACTIVE: "Aktif",
}


@dataclass(frozen=True)
class WarrantyStatus:
    bucket: WarrantyBucket
    days: Optional[int]
    label: str


@dataclass(frozen=True)
class WarrantyCounts:
    total: int = 0
    expired: int = 0
    due_soon: int = 0
    active: int = 0
    no_date: int = 0

    def for_bucket(self, bucket: WarrantyBucket) -> int:
        return {
            WarrantyBucket.NO_DATE: self.no_date,
            WarrantyBucket.EXPIRED: self.expired,
            WarrantyBucket.DUE_SOON: self.due_soon,
            WarrantyBucket.ACTIVE: self.active,
        }[bucket]


def normalize_threshold(value: Any) -> int:
    """Map a requested threshold onto the fixed set, falling back to 30 days."""
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_DUE_DAYS
    if days not in DUE_THRESHOLDS:
        return DEFAULT_DUE_DAYS
    return days


def _to_date(value: DateLike) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return coerce_date(value)


def warranty_days(warranty_end: DateLike, today: Optional[date] = None) -> Optional[int]:
    """Whole calendar days from today until the warranty end (negative once past).

    Time of day is discarded on both sides, so the result is the plain
    difference between the two local calendar dates.
    """
    end = _to_date(warranty_end)
    if end is None:
        return None
    reference = _to_date(today) if today is not None else date.today()
    return (end - reference).days


def classify(warranty_end: DateLike, due_days: int = DEFAULT_DUE_DAYS, today: Optional[date] = None) -> WarrantyStatus:
    days = warranty_days(warranty_end, today)
    if days is None:
        return WarrantyStatus(WarrantyBucket.NO_DATE, None, "Tarih yok")
    if days < 0:
        return WarrantyStatus(WarrantyBucket.EXPIRED, days, "GARANTİ BİTTİ")
    if days <= due_days:
        return WarrantyStatus(WarrantyBucket.DUE_SOON, days, f"{days} gün kaldı")
    return WarrantyStatus(WarrantyBucket.ACTIVE, days, "Aktif")


def classify_asset(asset: Asset, due_days: int = DEFAULT_DUE_DAYS, today: Optional[date] = None) -> WarrantyStatus:
    return classify(asset.warranty_end, due_days, today)


def count_buckets(
    assets: Iterable[Asset],
    due_days: int = DEFAULT_DUE_DAYS,
    today: Optional[date] = None,
) -> WarrantyCounts:
    reference = today or date.today()
    total = expired = due = active = no_date = 0
    for asset in assets:
        total += 1
        bucket = classify_asset(asset, due_days, reference).bucket
        if bucket is WarrantyBucket.NO_DATE:
            no_date += 1
        elif bucket is WarrantyBucket.EXPIRED:
            expired += 1
        elif bucket is WarrantyBucket.DUE_SOON:
            due += 1
        else:
            active += 1
    return WarrantyCounts(total=total, expired=expired, due_soon=due, active=active, no_date=no_date)


def bucket_label(bucket: WarrantyBucket, due_days: int) -> str:
    return BUCKET_LABELS[bucket].format(due=due_days)


__all__ = [
    "BUCKET_LABELS",
    "DEFAULT_DUE_DAYS",
    "DUE_THRESHOLDS",
    "WarrantyBucket",
    "WarrantyCounts",
    "WarrantyStatus",
    "bucket_label",
    "classify",
    "classify_asset",
    "count_buckets",
    "normalize_threshold",
    "warranty_days",
]

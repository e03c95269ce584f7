from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ekinpanel.models import Asset, JobType, LogEntry
from ekinpanel.warranty import DEFAULT_DUE_DAYS, WarrantyBucket, classify_asset

ALL = "ALL"
OTHER_GROUP = "DIGER"
LOG_GROUPS = [JobType.MONTAJ.value, JobType.ARIZA.value, JobType.BAKIM.value, JobType.SATIS.value, OTHER_GROUP]
LOG_GROUP_LABELS = {
    JobType.MONTAJ.value: "MONTAJ",
    JobType.ARIZA.value: "ARIZA",
    JobType.BAKIM.value: "BAKIM",
    JobType.SATIS.value: "EK ÜRÜN SATIŞI",
    OTHER_GROUP: "DİĞER",
}

JobFilter = Union[JobType, str]
BucketFilter = Union[WarrantyBucket, str]


def parse_job_filter(value: Optional[str]) -> JobFilter:
    key = (value or "").strip().upper()
    try:
        return JobType(key)
    except ValueError:
        return ALL


def parse_bucket_filter(value: Optional[str]) -> BucketFilter:
    key = (value or "").strip().upper()
    try:
        return WarrantyBucket(key)
    except ValueError:
        return ALL


def matches_query(asset: Asset, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    for field in (asset.uid, asset.customer_name, asset.customer_phone):
        if needle in (field or "").lower():
            return True
    return False


def matches_job(asset: Asset, job_type: JobFilter) -> bool:
    if job_type == ALL:
        return True
    wanted = job_type.value if isinstance(job_type, JobType) else str(job_type)
    return asset.job_type == wanted


def matches_bucket(
    asset: Asset,
    bucket: BucketFilter,
    due_days: int = DEFAULT_DUE_DAYS,
    today: Optional[date] = None,
) -> bool:
    if bucket == ALL:
        return True
    return classify_asset(asset, due_days, today).bucket == bucket


def filter_records(
    assets: Sequence[Asset],
    query: str = "",
    job_type: JobFilter = ALL,
    bucket: BucketFilter = ALL,
    due_days: int = DEFAULT_DUE_DAYS,
    today: Optional[date] = None,
) -> List[Asset]:
    """Return the assets matching every selector, in their original order."""
    reference = today or date.today()
    return [
        asset
        for asset in assets
        if matches_query(asset, query)
        and matches_job(asset, job_type)
        and matches_bucket(asset, bucket, due_days, reference)
    ]


def group_logs(logs: Iterable[LogEntry]) -> Dict[str, List[LogEntry]]:
    """Split log entries by action; unknown or empty actions land in DIGER."""
    groups: Dict[str, List[LogEntry]] = {key: [] for key in LOG_GROUPS}
    for entry in logs:
        action = (entry.action or "").upper()
        if action in groups and action != OTHER_GROUP:
            groups[action].append(entry)
        else:
            groups[OTHER_GROUP].append(entry)
    return groups


__all__ = [
    "ALL",
    "LOG_GROUPS",
    "LOG_GROUP_LABELS",
    "OTHER_GROUP",
    "filter_records",
    "group_logs",
    "matches_bucket",
    "matches_job",
    "matches_query",
    "parse_bucket_filter",
    "parse_job_filter",
]

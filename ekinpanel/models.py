"""Typed views of the rows kept in the hosted store.

Rows arrive as loose JSON objects; everything the panel renders goes through
``parse_asset`` / ``parse_log`` first so templates never see raw store data.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

log = logging.getLogger("uvicorn.error")


class JobType(str, Enum):
    MONTAJ = "MONTAJ"
    ARIZA = "ARIZA"
    BAKIM = "BAKIM"
    SATIS = "SATIS"


JOB_TYPE_LABELS: Dict[str, str] = {
    JobType.MONTAJ.value: "MONTAJ",
    JobType.ARIZA.value: "ARIZA",
    JobType.BAKIM.value: "BAKIM",
    JobType.SATIS.value: "EK ÜRÜN SATIŞI",
}
JOB_TYPE_OPTIONS = [(key, label) for key, label in JOB_TYPE_LABELS.items()]


def job_type_text(value: Optional[str]) -> str:
    """Display label for a stored job type; unknown values are shown as stored."""
    if not value:
        return "-"
    return JOB_TYPE_LABELS.get(value.strip().upper(), value)


def normalize_job_type(value: Optional[str]) -> Optional[JobType]:
    key = (value or "").strip().upper()
    try:
        return JobType(key)
    except ValueError:
        return None


class Role(str, Enum):
    ADMIN = "admin"
    OFFICE = "office"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        if isinstance(value, str) and value.strip().lower() == cls.ADMIN.value:
            return cls.ADMIN
        return cls.OFFICE


class RowParseError(ValueError):
    """Raised when a store row cannot be turned into a record."""


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def coerce_date(value: Any) -> Optional[date]:
    value = _blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        log.warning("Ignoring malformed date value %r", value)
        return None


def coerce_datetime(value: Any) -> Optional[datetime]:
    value = _blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        log.warning("Ignoring malformed timestamp value %r", value)
        return None


def _coerce_coordinate(value: Any) -> Optional[float]:
    value = _blank_to_none(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


class GeoPoint(BaseModel):
    lat: float
    lng: float


class Asset(BaseModel):
    uid: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    product_type: Optional[str] = None
    product_model: Optional[str] = None
    size: Optional[str] = None
    motor: Optional[str] = None
    extras: Optional[str] = None
    payments: Optional[str] = None
    install_date: Optional[date] = None
    job_type: Optional[str] = None
    address: Optional[str] = None
    installer_name: Optional[str] = None
    installer_phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    warranty_end: Optional[date] = None
    contract_pdf_path: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator(
        "customer_name",
        "customer_phone",
        "product_type",
        "product_model",
        "size",
        "motor",
        "extras",
        "payments",
        "job_type",
        "address",
        "installer_name",
        "installer_phone",
        "contract_pdf_path",
        mode="before",
    )
    @classmethod
    def _text(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not isinstance(value, str):
            return str(value)
        return value

    @field_validator("uid", mode="before")
    @classmethod
    def _uid(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("uid is required")
        return text

    @field_validator("install_date", "warranty_end", mode="before")
    @classmethod
    def _date(cls, value: Any) -> Optional[date]:
        return coerce_date(value)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coordinate(cls, value: Any) -> Optional[float]:
        return _coerce_coordinate(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _created(cls, value: Any) -> Optional[datetime]:
        return coerce_datetime(value)

    @property
    def location(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(lat=self.latitude, lng=self.longitude)

    @property
    def job_type_label(self) -> str:
        return job_type_text(self.job_type)


class LogEntry(BaseModel):
    id: Optional[int] = None
    uid: str
    action: Optional[str] = None
    note: Optional[str] = None
    photo_url: Optional[str] = None
    gps_lat: Optional[float] = None
    gps_lng: Optional[float] = None
    created_at: Optional[datetime] = None

    @field_validator("action", mode="before")
    @classmethod
    def _action(cls, value: Any) -> Optional[str]:
        # Kept verbatim; grouping decides what counts as a known tag.
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("note", "photo_url", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not isinstance(value, str):
            return str(value)
        return value

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value: Any) -> Optional[int]:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator("uid", mode="before")
    @classmethod
    def _uid(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("uid is required")
        return text

    @field_validator("gps_lat", "gps_lng", mode="before")
    @classmethod
    def _coordinate(cls, value: Any) -> Optional[float]:
        return _coerce_coordinate(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _created(cls, value: Any) -> Optional[datetime]:
        return coerce_datetime(value)


class Profile(BaseModel):
    user_id: str
    role: Role = Role.OFFICE

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, value: Any) -> Role:
        return Role.parse(value)


def parse_asset(row: Dict[str, Any]) -> Asset:
    try:
        return Asset.model_validate(row)
    except ValidationError as exc:
        raise RowParseError(f"Invalid asset row: {exc.errors()[0]['msg']}") from exc


def parse_log(row: Dict[str, Any]) -> LogEntry:
    try:
        return LogEntry.model_validate(row)
    except ValidationError as exc:
        raise RowParseError(f"Invalid log row: {exc.errors()[0]['msg']}") from exc


def parse_assets(rows: Iterable[Dict[str, Any]]) -> List[Asset]:
    items: List[Asset] = []
    for row in rows:
        try:
            items.append(parse_asset(row))
        except RowParseError:
            log.warning("Skipping asset row without a usable uid: %r", row)
    return items


def parse_logs(rows: Iterable[Dict[str, Any]]) -> List[LogEntry]:
    items: List[LogEntry] = []
    for row in rows:
        try:
            items.append(parse_log(row))
        except RowParseError:
            log.warning("Skipping log row without a usable uid: %r", row)
    return items


__all__ = [
    "Asset",
    "GeoPoint",
    "JOB_TYPE_LABELS",
    "JOB_TYPE_OPTIONS",
    "JobType",
    "LogEntry",
    "Profile",
    "Role",
    "RowParseError",
    "job_type_text",
    "normalize_job_type",
    "parse_asset",
    "parse_assets",
    "parse_log",
    "parse_logs",
]

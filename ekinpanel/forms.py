"""Form parsing for the asset and log pages.

Each form keeps the raw text the user typed so a rejected submission can be
re-rendered unchanged; ``validate`` returns the first problem as the message
shown above the form.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from starlette.datastructures import UploadFile

from ekinpanel import settings
from ekinpanel.models import JOB_TYPE_LABELS, Asset, GeoPoint, JobType, coerce_date, normalize_job_type
from ekinpanel.store import ContractUpload

UID_REQUIRED = "UID zorunlu. (Sadece sonuna numara girin)"
INSTALL_DATE_REQUIRED = "Montaj tarihi zorunlu."
PDF_ONLY = "Lütfen sadece PDF seç."
NOTE_REQUIRED = "Not boş olamaz."
UNKNOWN_JOB_TYPE = "Geçersiz iş tipi."

TEXT_FIELDS = (
    "customer_name",
    "customer_phone",
    "product_type",
    "address",
    "installer_name",
    "installer_phone",
    "product_model",
    "size",
    "motor",
    "extras",
    "payments",
)

_NON_DIGITS = re.compile(r"\D")


def uid_suffix_digits(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def full_uid(suffix: str) -> str:
    return f"{settings.UID_PREFIX}{uid_suffix_digits(suffix)}"


def _parse_coordinate(value: Any) -> Optional[float]:
    if value is None:
        return None
    stripped = str(value).strip()
    if not stripped:
        return None
    try:
        return float(stripped)
    except (TypeError, ValueError):
        return None


def _text(form: Mapping[str, Any], key: str) -> str:
    value = form.get(key)
    if value is None or isinstance(value, UploadFile):
        return ""
    return str(value)


@dataclass
class AssetForm:
    """Shared state of the new-record and edit pages.

    ``uid_suffix`` only matters on the new-record page; the edit page carries
    the existing ``uid`` and never changes it.
    """

    uid: str = ""
    uid_suffix: str = ""
    install_date: str = ""
    job_type: str = JobType.MONTAJ.value
    values: Dict[str, str] = field(default_factory=dict)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_query: str = ""
    contract_pdf_path: Optional[str] = None

    @classmethod
    def from_asset(cls, asset: Asset) -> "AssetForm":
        values = {name: getattr(asset, name) or "" for name in TEXT_FIELDS}
        return cls(
            uid=asset.uid,
            install_date=asset.install_date.isoformat() if asset.install_date else "",
            job_type=asset.job_type or JobType.MONTAJ.value,
            values=values,
            latitude=asset.latitude,
            longitude=asset.longitude,
            contract_pdf_path=asset.contract_pdf_path,
        )

    @classmethod
    def from_form(cls, form: Mapping[str, Any], *, uid: str = "") -> "AssetForm":
        suffix = uid_suffix_digits(_text(form, "uid_suffix"))
        lat = _parse_coordinate(form.get("latitude"))
        lng = _parse_coordinate(form.get("longitude"))
        if lat is None or lng is None:
            lat = lng = None
        return cls(
            uid=uid or (full_uid(suffix) if suffix else ""),
            uid_suffix=suffix,
            install_date=_text(form, "install_date").strip(),
            job_type=_text(form, "job_type").strip().upper() or JobType.MONTAJ.value,
            values={name: _text(form, name) for name in TEXT_FIELDS},
            latitude=lat,
            longitude=lng,
            location_query=_text(form, "location_query"),
        )

    # The map picker reads and writes the point through these two.
    def get_point(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(lat=self.latitude, lng=self.longitude)

    def set_point(self, point: Optional[GeoPoint]) -> None:
        if point is None:
            self.latitude = None
            self.longitude = None
        else:
            self.latitude = point.lat
            self.longitude = point.lng

    @property
    def preview_uid(self) -> str:
        return full_uid(self.uid_suffix)

    def validate(self, *, require_uid: bool) -> Optional[str]:
        if require_uid and not self.uid_suffix:
            return UID_REQUIRED
        if not self.install_date or coerce_date(self.install_date) is None:
            return INSTALL_DATE_REQUIRED
        if normalize_job_type(self.job_type) is None:
            return UNKNOWN_JOB_TYPE
        return None

    def to_payload(self, *, include_uid: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if include_uid:
            payload["uid"] = self.uid.strip()
        for name in TEXT_FIELDS:
            payload[name] = (self.values.get(name) or "").strip() or None
        payload["install_date"] = self.install_date.strip()
        payload["job_type"] = normalize_job_type(self.job_type).value
        payload["latitude"] = self.latitude
        payload["longitude"] = self.longitude
        return payload


async def read_contract(upload: Any) -> Optional[ContractUpload]:
    """Read an optional contract upload; raises ``ValueError`` for anything but a PDF."""
    if not isinstance(upload, UploadFile):
        return None
    filename = (upload.filename or "").strip()
    if not filename:
        return None
    data = await upload.read()
    await upload.close()
    if not data:
        return None
    content_type = (upload.content_type or "").lower()
    if content_type != "application/pdf" and not (
        content_type in ("", "application/octet-stream") and Path(filename).suffix.lower() == ".pdf"
    ):
        raise ValueError(PDF_ONLY)
    if len(data) > settings.MAX_CONTRACT_SIZE:
        raise ValueError(f"{filename} {settings.MAX_CONTRACT_SIZE // (1024 * 1024)} MB sınırını aşıyor.")
    return ContractUpload(filename=filename, data=data)


@dataclass
class LogForm:
    action: str = JobType.ARIZA.value
    note: str = ""

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> "LogForm":
        return cls(
            action=_text(form, "action").strip().upper() or JobType.ARIZA.value,
            note=_text(form, "note"),
        )

    def validate(self) -> Optional[str]:
        if not self.note.strip():
            return NOTE_REQUIRED
        if self.action not in JOB_TYPE_LABELS:
            return UNKNOWN_JOB_TYPE
        return None

    def to_payload(self, uid: str) -> Dict[str, Any]:
        return {"uid": uid, "action": self.action, "note": self.note.strip()}


__all__ = [
    "AssetForm",
    "INSTALL_DATE_REQUIRED",
    "LogForm",
    "NOTE_REQUIRED",
    "PDF_ONLY",
    "UID_REQUIRED",
    "full_uid",
    "read_contract",
    "uid_suffix_digits",
]

"""Typed records exchanged with the coding API.

The API answers in two flavours: the live re-suggestion diff uses PascalCase
keys while the upload comparison may use either camelCase or PascalCase.
:class:`DualCaseModel` resolves that once, at validation time: for every field
the camelCase key wins, the capitalised key is the fallback and a missing or
null value leaves the field default in place.  Nothing downstream ever looks
at key casing again.
"""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from coding_admin.time_utils import isoformat_z, to_utc_datetime, utc_now


def _capitalise(key: str) -> str:
    return key[:1].upper() + key[1:]


def pick(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Return ``data[key]``, else ``data[Key]``, else ``default`` (nulls skipped)."""

    value = data.get(key)
    if value is None:
        value = data.get(_capitalise(key))
    return default if value is None else value


class DualCaseModel(BaseModel):
    """Base model accepting camelCase or PascalCase keys for every field."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _resolve_key_casing(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        resolved: Dict[str, Any] = {}
        for name, info in cls.model_fields.items():
            key = info.alias or name
            value = pick(data, key)
            if value is None and name != key:
                value = data.get(name)
            if value is not None:
                resolved[key] = value
        return resolved

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EpisodeStatus(IntEnum):
    DRAFT = 0
    SUBMITTED = 1
    APPROVED = 2
    REJECTED = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: Any) -> "EpisodeStatus":
        """Accept the numeric value, its string form or the member name."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            try:
                return cls[text.upper()]
            except KeyError:
                raise ValueError(f"unknown episode status {value!r}") from None
        return cls(int(value))


class CodeEntry(DualCaseModel):
    """One diagnosis or procedure code."""

    code: str = ""
    description: str = ""
    is_primary: bool = Field(False, alias="isPrimary")

    def __str__(self) -> str:
        text = f"{self.code} — {self.description}"
        return f"{text} (primary)" if self.is_primary else text


class CodeSetPair(DualCaseModel):
    """Prior ("old", coder-supplied) and current ("new", system) code sets."""

    old: List[CodeEntry] = Field(default_factory=list)
    new: List[CodeEntry] = Field(default_factory=list)

    def added(self) -> List[str]:
        return _ordered_difference(self.new, self.old)

    def removed(self) -> List[str]:
        return _ordered_difference(self.old, self.new)


def _ordered_difference(left: List[CodeEntry], right: List[CodeEntry]) -> List[str]:
    exclude = {entry.code for entry in right}
    seen: set[str] = set()
    result: List[str] = []
    for entry in left:
        if entry.code in exclude or entry.code in seen:
            continue
        seen.add(entry.code)
        result.append(entry.code)
    return result


class CodeDeltas(DualCaseModel):
    dx_added: List[str] = Field(default_factory=list, alias="dxAdded")
    dx_removed: List[str] = Field(default_factory=list, alias="dxRemoved")
    px_added: List[str] = Field(default_factory=list, alias="pxAdded")
    px_removed: List[str] = Field(default_factory=list, alias="pxRemoved")


class DiffResult(DualCaseModel):
    """Canonical comparison between an old and a new code set."""

    dx: CodeSetPair = Field(default_factory=CodeSetPair)
    px: CodeSetPair = Field(default_factory=CodeSetPair)
    deltas: Optional[CodeDeltas] = None
    audit_id: Optional[str] = Field(None, alias="auditId")
    narrative_preview: Optional[str] = Field(None, alias="narrativePreview")

    @model_validator(mode="after")
    def _derive_missing_deltas(self) -> "DiffResult":
        if self.deltas is None:
            self.deltas = CodeDeltas(
                dx_added=self.dx.added(),
                dx_removed=self.dx.removed(),
                px_added=self.px.added(),
                px_removed=self.px.removed(),
            )
        return self

    @property
    def revertible(self) -> bool:
        return bool(self.audit_id)


class Episode(DualCaseModel):
    """One admission's coding case as listed by the API."""

    id: Union[int, str]
    patient_name: str = Field("(unnamed)", alias="patientName")
    admission_date: Optional[datetime] = Field(None, alias="admissionDate")
    specialty: str = ""
    status: EpisodeStatus = EpisodeStatus.DRAFT
    nhs_number: Optional[str] = Field(None, alias="nhsNumber")
    source_text: Optional[str] = Field(None, alias="sourceText")

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> EpisodeStatus:  # noqa: N805
        return EpisodeStatus.parse(value)


class EpisodeDraft(BaseModel):
    """Fields sent to ``episodes/suggest`` and ``episodes``."""

    model_config = ConfigDict(populate_by_name=True)

    nhs_number: str = Field("9999999999", alias="nhsNumber")
    patient_name: str = Field("John Smith", alias="patientName")
    admission_date: datetime = Field(default_factory=utc_now, alias="admissionDate")
    specialty: str = "Respiratory Medicine"
    source_text: str = Field(..., alias="sourceText", min_length=1)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "nhsNumber": self.nhs_number,
            "patientName": self.patient_name,
            "admissionDate": isoformat_z(self.admission_date),
            "specialty": self.specialty,
            "sourceText": self.source_text,
        }


class EpisodeFilters(BaseModel):
    """Query parameters for ``GET episodes``."""

    status: Optional[EpisodeStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(25, ge=1)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Optional[EpisodeStatus]:  # noqa: N805
        if value is None or value == "":
            return None
        return EpisodeStatus.parse(value)

    @field_validator("from_date", "to_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[datetime]:  # noqa: N805
        if value is None or value == "":
            return None
        return to_utc_datetime(value)

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.status is not None:
            params["status"] = str(int(self.status))
        if self.from_date is not None:
            params["from"] = isoformat_z(self.from_date)
        if self.to_date is not None:
            params["to"] = isoformat_z(self.to_date)
        params["page"] = str(self.page)
        params["pageSize"] = str(self.page_size)
        return params

    def matches(self, episode: Episode) -> bool:
        return self.status is None or episode.status == self.status


class EpisodePage(BaseModel):
    items: List[Episode] = Field(default_factory=list)
    total: int = 0

    @classmethod
    def from_response(cls, data: Any) -> "EpisodePage":
        """Accept a bare list (one full page) or an ``{items, total}`` object."""

        if isinstance(data, list):
            return cls(items=data, total=len(data))
        if isinstance(data, Mapping):
            items = pick(data, "items", [])
            total = pick(data, "total", len(items))
            return cls(items=items, total=total)
        return cls()


class QueryDraft(BaseModel):
    """Clinician query composed by a coder; sent once and not retained."""

    to: str = "dr.smith@hospital.nhs.uk"
    subject: str = "Clinical Coding Query"
    body: str = "Could you clarify the pneumonia aetiology and site?"

    @field_validator("to")
    @classmethod
    def _require_address(cls, value: str) -> str:  # noqa: N805
        text = value.strip()
        if "@" not in text:
            raise ValueError("recipient must be an email address")
        return text

    def to_payload(self) -> Dict[str, str]:
        return {"to": self.to, "subject": self.subject, "body": self.body}


__all__ = [
    "CodeDeltas",
    "CodeEntry",
    "CodeSetPair",
    "DiffResult",
    "DualCaseModel",
    "Episode",
    "EpisodeDraft",
    "EpisodeFilters",
    "EpisodePage",
    "EpisodeStatus",
    "QueryDraft",
    "pick",
]

"""Value objects exchanged with the SII services.

Parsing results are small tagged unions: callers match on the concrete type
instead of probing optional fields.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from .errors import AuthorityRejection
from .rut import split_rut


@dataclass(frozen=True)
class Seed:
    value: str


@dataclass(frozen=True)
class Token:
    value: str


@dataclass(frozen=True)
class Rejected:
    """Well-formed answer whose ESTADO reports failure."""

    code: str
    glosa: Optional[str] = None
    raw: str = field(default="", repr=False)


@dataclass(frozen=True)
class ParseFailure:
    reason: str
    raw: str = field(default="", repr=False)


SeedResult = Union[Seed, ParseFailure]
TokenResult = Union[Token, Rejected, ParseFailure]


@dataclass(frozen=True)
class SubmitterIdentity:
    """Who sends (the certificate holder) and on behalf of which company."""

    sender_rut: str
    sender_dv: str
    company_rut: str
    company_dv: str

    @classmethod
    def from_ruts(cls, sender: str, company: str) -> "SubmitterIdentity":
        sender_rut, sender_dv = split_rut(sender)
        company_rut, company_dv = split_rut(company)
        return cls(sender_rut, sender_dv, company_rut, company_dv)

    def form_fields(self) -> Mapping[str, str]:
        return {
            "rutSender": str(self.sender_rut),
            "dvSender": str(self.sender_dv),
            "rutCompany": str(self.company_rut),
            "dvCompany": str(self.company_dv),
        }


@dataclass(frozen=True)
class UploadReceipt:
    """Outcome of a DTEUpload call. ``track_id`` is only set when it was parsed."""

    http_status: int
    raw: str = field(repr=False)
    track_id: Optional[str] = None
    upload_status: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.track_id is not None

    def raise_for_failure(self) -> None:
        if self.ok:
            return
        raise AuthorityRejection(
            "SII upload returned no TRACKID",
            code=self.upload_status,
            response=self.raw,
            status_code=self.http_status,
        )


@dataclass(frozen=True)
class SubmissionStatus:
    track_id: str
    status: Optional[str]
    description: Optional[str] = None
    received: Optional[int] = None
    informed: Optional[int] = None
    accepted: Optional[int] = None
    rejected: Optional[int] = None
    objected: Optional[int] = None
    attention_number: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class DocumentStatus:
    status: Optional[str]
    description: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    attention_number: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from sigverify import config
from sigverify.errors import MalformedEntry, RecordDecodeError

IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")

REASON_SIGNATURE_MISMATCH = "signature_mismatch"
REASON_UNVERIFIABLE = "unverifiable"


class WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RegistrationRequest(WireModel):
    pub_key: str


class SubmissionRequest(WireModel):
    payload: str
    signature: str


class VerificationRequest(WireModel):
    """Queue payload; never persisted outside the queue and staging lists"""

    transaction_id: str = Field(min_length=1)
    payload: str
    signature: str
    pub_key: str = Field(min_length=1)

    @classmethod
    def decode(cls, raw: str) -> "VerificationRequest":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) or "entry" for err in e.errors()})
            raise MalformedEntry(f"invalid_entry: {', '.join(fields)}") from e


class VerificationRecord(WireModel):
    transaction_id: str
    complete: bool
    valid: Optional[bool] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls, transaction_id: str) -> "VerificationRecord":
        return cls(transaction_id=transaction_id, complete=False)

    @classmethod
    def decode(cls, raw: str) -> "VerificationRecord":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise RecordDecodeError(str(e)) from e


class PoisonEntry(WireModel):
    entry: str
    reason: str
    worker_id: str
    quarantined_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


class WorkerIdentity(BaseModel):
    """Names one worker instance and scopes its staging list and lease"""

    model_config = ConfigDict(frozen=True)

    name: str

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not IDENTITY_PATTERN.match(v):
            raise ValueError(
                "worker identity must be 1-64 characters of letters, digits, '.', '_' or '-'"
            )
        return v

    @property
    def stage_key(self) -> str:
        return f"{config.STAGE_PREFIX}{self.name}"

    @property
    def lease_key(self) -> str:
        return f"{config.LEASE_PREFIX}{self.name}:lease"

    def __str__(self) -> str:
        return self.name

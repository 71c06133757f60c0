"""Event definitions for SSH login monitoring."""

import time

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

UNKNOWN = "unknown"
LOCALHOST = "localhost"
STATUS_SUCCESS = "success"


def now_millis() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


class LoginEvent(BaseModel):
    """Represents one observed SSH session start.

    Serialized as a single JSON object per datagram. Older hook builds used
    short field names (``ip``, ``port``, ``timestamp``...), which are still
    accepted on decode.
    """

    model_config = ConfigDict(extra="ignore")

    username: str = UNKNOWN
    source_ip: str = Field(
        default=LOCALHOST,
        alias="sourceIP",
        validation_alias=AliasChoices("sourceIP", "ip", "source_ip"),
    )
    source_port: str | None = Field(
        default=None,
        alias="sourcePort",
        validation_alias=AliasChoices("sourcePort", "port", "source_port"),
    )
    timestamp_millis: int = Field(
        default=0,
        alias="timestampMillis",
        validation_alias=AliasChoices("timestampMillis", "timestamp", "timestamp_millis"),
    )
    status: str = ""
    auth_method: str | None = Field(
        default=UNKNOWN,
        alias="authMethod",
        validation_alias=AliasChoices("authMethod", "method", "auth_method"),
    )
    tty: str | None = None
    session_id: str = Field(
        default="",
        alias="sessionID",
        validation_alias=AliasChoices("sessionID", "sessionId", "session_id"),
    )

    @field_validator(
        "username", "source_ip", "timestamp_millis", "status", "session_id", mode="before"
    )
    @classmethod
    def _null_as_default(cls, value, info: ValidationInfo):
        # senders may send null for a field they could not fill
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    def to_wire(self) -> bytes:
        """Encode the event as a JSON datagram payload."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_wire(cls, data: bytes) -> "LoginEvent":
        """Decode a datagram payload. Raises ValidationError if malformed."""
        return cls.model_validate_json(data)

    def backfill(self, now: int | None = None) -> "LoginEvent":
        """Fill in the receive timestamp and status when the sender left them out."""
        if not self.timestamp_millis:
            self.timestamp_millis = now if now is not None else now_millis()
        if not self.status:
            self.status = STATUS_SUCCESS
        return self

"""
Domain models for shifts, profiles, recordings and capture jobs, plus the
request/response bodies of the HTTP surface and the provider's webhook
event payload.
"""

from datetime import datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


class ShiftStatus(StrEnum):
    ACTIVE = "active"
    ENDED = "ended"


class Role(StrEnum):
    MANAGER = "manager"
    EMPLOYEE = "employee"


class RecordingStatus(StrEnum):
    RECORDING = "recording"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not RecordingStatus.RECORDING


class Shift(BaseModel):
    id: str
    manager_id: str | None = None
    status: ShiftStatus = ShiftStatus.ACTIVE
    started_at: datetime
    ended_at: datetime | None = None


class Profile(BaseModel):
    id: str
    email: str = ""
    name: str = ""
    role: Role


class Identity(BaseModel):
    """Caller identity extracted from a bearer credential."""

    subject_id: str
    subject_email: str = ""


class Recording(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    shift_id: str
    employee_id: str
    job_id: str
    status: RecordingStatus = RecordingStatus.RECORDING
    started_at: datetime
    ended_at: datetime | None = None
    storage_location: str | None = None  # set only once completed
    chunk_count: int = 0


class CapabilityToken(BaseModel):
    subject: str
    display_name: str
    session_name: str
    can_publish: bool
    can_subscribe: bool
    can_publish_data: bool = True
    expiry: datetime
    jwt: str


class CaptureJob(BaseModel):
    job_id: str
    session_name: str
    output_path_prefix: str


class SegmentedOutput(BaseModel):
    """Where a capture job writes its segments and playlist."""

    filename_prefix: str
    playlist_name: str
    segment_duration: int


class S3Upload(BaseModel):
    access_key: str
    secret: str
    region: str
    endpoint: str
    bucket: str
    force_path_style: bool = False


class CaptureRequest(BaseModel):
    session_name: str
    output_path_prefix: str
    output: SegmentedOutput
    storage: S3Upload
    layout: str = "grid"


# request / response bodies

_camel = ConfigDict(populate_by_name=True)


class ShiftRequest(BaseModel):
    model_config = _camel

    shift_id: str | None = Field(
        default=None, validation_alias=AliasChoices("shift_id", "shiftId")
    )


class StopRequest(BaseModel):
    model_config = _camel

    job_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("job_id", "jobId", "egressId"),
    )


class TokenResponse(BaseModel):
    token: str
    session_name: str
    caller_identity: str


class StartCaptureResponse(BaseModel):
    job_id: str
    recording_id: str


class StopCaptureResponse(BaseModel):
    success: bool = True


# provider webhook payload


class SegmentsInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    playlist_name: str | None = Field(default=None, alias="playlistName")
    playlist_location: str | None = Field(
        default=None, alias="playlistLocation"
    )
    segment_count: int | None = Field(default=None, alias="segmentCount")


class EgressInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    egress_id: str | None = Field(default=None, alias="egressId")
    room_name: str | None = Field(default=None, alias="roomName")
    status: str | int | None = None
    error: str | None = None
    segment_results: list[SegmentsInfo] = Field(
        default_factory=list, alias="segmentResults"
    )

    @field_validator("segment_results", mode="wrap")
    @classmethod
    def _lenient_segments(
        cls, value: object, handler: ValidatorFunctionWrapHandler
    ) -> list[SegmentsInfo]:
        # unreadable segment reports are dropped; id and status still parse
        try:
            return handler(value)
        except ValidationError:
            return []

    @property
    def first_segments(self) -> SegmentsInfo | None:
        return self.segment_results[0] if self.segment_results else None


class JobEventKind(StrEnum):
    JOB_STARTED = "egress_started"
    JOB_UPDATED = "egress_updated"
    JOB_ENDED = "egress_ended"


class WebhookEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str
    id: str | None = None
    egress_info: EgressInfo | None = Field(default=None, alias="egressInfo")

import base64
import hashlib
import hmac
import logging
from datetime import datetime

import jwt
from pydantic import ValidationError

from shiftcam.config import Settings
from shiftcam.database import RecordingRegistry
from shiftcam.errors import ConfigurationError, InvalidSignature
from shiftcam.models import (
    EgressInfo,
    JobEventKind,
    RecordingStatus,
    WebhookEvent,
)
from shiftcam.storage import storage_location_for

logger = logging.getLogger(__name__)

# provider status values, by name and by protobuf enum number
FAILED_STATUSES = {"EGRESS_FAILED", "EGRESS_ABORTED", 4, 5}


def body_digest(body: bytes) -> str:
    return base64.b64encode(hashlib.sha256(body).digest()).decode()


def verify_signature(
    body: bytes,
    authorization: str | None,
    *,
    secret: str,
    issuer: str | None = None,
) -> None:
    """
    The provider signs each delivery with an HS256 token whose `sha256`
    claim is the base64 SHA-256 of the raw body.
    """
    if not authorization:
        raise InvalidSignature("Missing authorization header")
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=issuer,
            leeway=10,
            options={"verify_aud": False, "require": ["sha256"]},
        )
    except jwt.PyJWTError as exc:
        raise InvalidSignature(f"Invalid webhook token: {exc}") from exc

    if not hmac.compare_digest(str(claims["sha256"]), body_digest(body)):
        raise InvalidSignature("Body hash mismatch")


def job_failed(info: EgressInfo) -> bool:
    return info.status in FAILED_STATUSES or bool(info.error)


class CallbackReconciler:
    """
    Receives capture-job events from the provider. `job_ended` is the
    authoritative finalize for a Recording; every accepted delivery is
    acknowledged, even when it changed nothing, so the provider never
    retries an event that was already handled.
    """

    def __init__(
        self,
        recordings: RecordingRegistry,
        settings: Settings,
    ) -> None:
        self.recordings = recordings
        self.settings = settings

    @property
    def signing_secret(self) -> str:
        settings = self.settings
        secret = settings.webhook_secret or settings.livekit_api_secret
        if not secret:
            logger.error("webhook signing secret not set")
            raise ConfigurationError("Webhook secret not configured")
        return secret

    async def handle(
        self, body: bytes, authorization: str | None, *, now: datetime
    ) -> None:
        secret = self.signing_secret
        try:
            verify_signature(
                body,
                authorization,
                secret=secret,
                issuer=self.settings.livekit_api_key,
            )
        except InvalidSignature as exc:
            logger.error("webhook signature verification failed: %s", exc)
            raise InvalidSignature() from exc

        try:
            event = WebhookEvent.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("dropping malformed webhook event: %s", exc)
            return

        logger.info("provider webhook event: %s", event.event)
        info = event.egress_info

        if event.event == JobEventKind.JOB_STARTED:
            # the row was inserted when the capture was started
            logger.info("capture started: %s", info.egress_id if info else None)
        elif event.event == JobEventKind.JOB_UPDATED:
            if info is not None:
                await self._on_updated(info)
        elif event.event == JobEventKind.JOB_ENDED:
            await self._on_ended(info, now=now)

    async def _on_updated(self, info: EgressInfo) -> None:
        if not info.egress_id:
            return
        logger.info(
            "capture updated: %s status: %s", info.egress_id, info.status
        )
        segments = info.first_segments
        if segments is None or segments.segment_count is None:
            return
        try:
            await self.recordings.record_progress(
                info.egress_id, segments.segment_count
            )
        except Exception:
            logger.exception("failed to record progress for %s", info.egress_id)

    async def _on_ended(
        self, info: EgressInfo | None, *, now: datetime
    ) -> None:
        if info is None or not info.egress_id:
            logger.warning("egress_ended with no egress id")
            return

        job_id = info.egress_id
        status = RecordingStatus.COMPLETED
        if job_failed(info):
            status = RecordingStatus.FAILED

        try:
            storage_location = None
            if status is RecordingStatus.COMPLETED:
                storage_location = await self._storage_location(info)
            finalized = await self.recordings.finalize_if_recording(
                job_id,
                status=status,
                ended_at=now,
                storage_location=storage_location,
            )
        except Exception:
            # still acknowledged; left for out-of-band reconciliation
            logger.exception(
                "failed to finalize recording %s as %s", job_id, status.value
            )
            return

        if finalized:
            logger.info("recording %s -> %s", job_id, status.value)
        else:
            logger.info("recording %s already finalized or unknown", job_id)

    async def _storage_location(self, info: EgressInfo) -> str | None:
        segments = info.first_segments
        if segments is not None and segments.playlist_location:
            return segments.playlist_location

        recording = await self.recordings.get_recording(info.egress_id)
        if recording is None:
            return None
        return storage_location_for(
            self.settings, recording.shift_id, recording.employee_id
        )

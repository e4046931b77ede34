import logging
from datetime import datetime

from shiftcam.config import Settings
from shiftcam.database import RecordingRegistry, ShiftRegistry
from shiftcam.egress import CaptureProvider
from shiftcam.errors import (
    CaptureStartFailed,
    ConfigurationError,
    InvalidJobId,
    MissingField,
    RecordingRegistrationFailed,
    SessionNotFound,
    StopFailed,
)
from shiftcam.models import (
    CaptureRequest,
    Identity,
    Recording,
    RecordingStatus,
    ShiftStatus,
    StartCaptureResponse,
)
from shiftcam.storage import (
    output_path_prefix,
    segmented_output,
    session_name_for,
    storage_location_for,
    upload_target,
)
from shiftcam.tokens import mint_admin_token

logger = logging.getLogger(__name__)


def _require_provider(settings: Settings) -> None:
    if not settings.provider_configured:
        logger.error("missing LiveKit configuration")
        raise ConfigurationError("LiveKit not configured")


async def start_capture(
    caller: Identity,
    shift_id: str | None,
    *,
    shifts: ShiftRegistry,
    recordings: RecordingRegistry,
    provider: CaptureProvider,
    settings: Settings,
    now: datetime,
) -> StartCaptureResponse:
    """
    Start a segmented capture of the caller's stream and register its
    Recording row.

    Nothing is written unless the provider confirms the job. If the row
    cannot be written afterwards the job is running unrecorded, which is
    reported as RecordingRegistrationFailed.
    """
    if not shift_id:
        raise MissingField("shift_id is required")

    shift = await shifts.get_shift(shift_id)
    if shift is None or shift.status != ShiftStatus.ACTIVE:
        raise SessionNotFound()

    _require_provider(settings)
    storage = upload_target(settings)

    employee_id = caller.subject_id
    request = CaptureRequest(
        session_name=session_name_for(shift_id),
        output_path_prefix=output_path_prefix(shift_id, employee_id),
        output=segmented_output(settings, shift_id, employee_id),
        storage=storage,
    )

    logger.info(
        "starting capture for %s participant %s",
        request.session_name,
        employee_id,
    )
    admin_token = mint_admin_token(settings, now)
    try:
        job = await provider.start_job(request, admin_token=admin_token)
    except CaptureStartFailed:
        raise
    except Exception as exc:
        logger.exception("capture start failed for %s", request.session_name)
        raise CaptureStartFailed(str(exc)) from exc

    logger.info("capture started: %s", job.job_id)

    recording = Recording(
        shift_id=shift_id,
        employee_id=employee_id,
        job_id=job.job_id,
        status=RecordingStatus.RECORDING,
        started_at=now,
    )
    try:
        recording = await recordings.insert_recording(recording)
    except Exception as exc:
        logger.critical(
            "capture %s is running but its recording row could not be "
            "written (shift=%s employee=%s): %r",
            job.job_id,
            shift_id,
            employee_id,
            exc,
        )
        raise RecordingRegistrationFailed(job.job_id) from exc

    return StartCaptureResponse(job_id=job.job_id, recording_id=recording.id)


async def finalize_after_stop(
    job_id: str,
    *,
    recordings: RecordingRegistry,
    settings: Settings,
    now: datetime,
) -> bool:
    """
    Fallback finalize for a stopped job. The provider callback normally
    finalizes the row; this covers a late or missing callback and never
    overwrites a row that is already terminal.
    """
    recording = await recordings.get_recording(job_id)
    if recording is None:
        logger.info("no recording row for stopped job %s", job_id)
        return False
    if recording.status.terminal:
        return False

    finalized = await recordings.finalize_if_recording(
        job_id,
        status=RecordingStatus.COMPLETED,
        ended_at=now,
        storage_location=storage_location_for(
            settings, recording.shift_id, recording.employee_id
        ),
    )
    if finalized:
        logger.info("recording %s completed after stop request", job_id)
    return finalized


async def stop_capture(
    caller: Identity,
    job_id: str | None,
    *,
    recordings: RecordingRegistry,
    provider: CaptureProvider,
    settings: Settings,
    now: datetime,
) -> None:
    if not job_id or not job_id.strip():
        raise InvalidJobId()
    job_id = job_id.strip()

    _require_provider(settings)

    logger.info("stopping capture %s for %s", job_id, caller.subject_id)
    admin_token = mint_admin_token(settings, now)
    try:
        await provider.stop_job(job_id, admin_token=admin_token)
    except StopFailed as exc:
        # often the job already ended on its own
        logger.warning("stop request for %s failed: %s", job_id, exc.message)
    except Exception:
        logger.exception("stop request for %s failed", job_id)

    try:
        await finalize_after_stop(
            job_id, recordings=recordings, settings=settings, now=now
        )
    except Exception:
        logger.exception("fallback finalize failed for %s", job_id)

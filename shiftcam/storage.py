"""
Object-storage layout for captured media.

Segments land at `{shift_id}/{employee_id}/chunk_<n>` and the HLS manifest
at `{shift_id}/{employee_id}/playlist.m3u8`. Downstream readers depend on
these paths, so they must not change.
"""

import logging
import re

from shiftcam.config import Settings
from shiftcam.errors import ConfigurationError
from shiftcam.models import S3Upload, SegmentedOutput

logger = logging.getLogger(__name__)

DEFAULT_REGION = "sgp1"
PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PREFIX = "chunk_"


def session_name_for(shift_id: str) -> str:
    return f"shift-{shift_id}"


def output_path_prefix(shift_id: str, employee_id: str) -> str:
    return f"{shift_id}/{employee_id}/"


def segment_prefix(shift_id: str, employee_id: str) -> str:
    return output_path_prefix(shift_id, employee_id) + SEGMENT_PREFIX


def playlist_path(shift_id: str, employee_id: str) -> str:
    return output_path_prefix(shift_id, employee_id) + PLAYLIST_NAME


def normalize_endpoint(endpoint: str, bucket: str) -> str:
    """
    Return the bare regional endpoint, e.g.
    `https://my-bucket.sgp1.digitaloceanspaces.com/` ->
    `https://sgp1.digitaloceanspaces.com`.
    """
    if endpoint.startswith("http"):
        normalized = endpoint.rstrip("/")
    else:
        normalized = f"https://{endpoint.rstrip('/')}"
    return re.sub(rf"^(https?://){re.escape(bucket)}\.", r"\1", normalized)


def region_for(normalized_endpoint: str, fallback: str | None = None) -> str:
    hostname = re.sub(r"^https?://", "", normalized_endpoint)
    return hostname.split(".")[0] or fallback or DEFAULT_REGION


def public_base_url(settings: Settings) -> str | None:
    if not settings.spaces_endpoint or not settings.spaces_bucket:
        return None
    endpoint = normalize_endpoint(
        settings.spaces_endpoint, settings.spaces_bucket
    )
    return f"{endpoint}/{settings.spaces_bucket}"


def storage_location_for(
    settings: Settings, shift_id: str, employee_id: str
) -> str:
    """Fetchable URL of the finished manifest for one employee's capture."""
    base = public_base_url(settings)
    path = playlist_path(shift_id, employee_id)
    if base is None:
        logger.warning(
            "storage endpoint not configured; storing relative manifest path"
        )
        return path
    return f"{base}/{path}"


def segmented_output(
    settings: Settings, shift_id: str, employee_id: str
) -> SegmentedOutput:
    return SegmentedOutput(
        filename_prefix=segment_prefix(shift_id, employee_id),
        playlist_name=playlist_path(shift_id, employee_id),
        segment_duration=settings.segment_duration,
    )


def upload_target(settings: Settings) -> S3Upload:
    if not settings.storage_configured:
        raise ConfigurationError("Storage not configured")
    endpoint = normalize_endpoint(
        settings.spaces_endpoint, settings.spaces_bucket
    )
    region = region_for(endpoint, settings.s3_region)
    logger.info(
        "storage endpoint (normalized): %s bucket: %s region: %s",
        endpoint,
        settings.spaces_bucket,
        region,
    )
    return S3Upload(
        access_key=settings.spaces_key,
        secret=settings.spaces_secret,
        region=region,
        endpoint=endpoint,
        bucket=settings.spaces_bucket,
        force_path_style=False,
    )

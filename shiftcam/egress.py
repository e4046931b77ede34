"""
Capture provider interface and its HTTP implementation against the
provider's Twirp egress API.
"""

import logging
from typing import Protocol

import httpx

from shiftcam.errors import CaptureStartFailed, CoordinatorError, StopFailed
from shiftcam.models import CaptureJob, CaptureRequest

logger = logging.getLogger(__name__)

START_PATH = "/twirp/livekit.Egress/StartRoomCompositeEgress"
STOP_PATH = "/twirp/livekit.Egress/StopEgress"


class CaptureProvider(Protocol):
    async def start_job(
        self, request: CaptureRequest, *, admin_token: str
    ) -> CaptureJob: ...

    async def stop_job(self, job_id: str, *, admin_token: str) -> None: ...


def start_payload(request: CaptureRequest) -> dict:
    # protobuf JSON flattens the `output` oneof: `s3` sits directly on the
    # segment output
    return {
        "room_name": request.session_name,
        "layout": request.layout,
        "segment_outputs": [
            {
                "filename_prefix": request.output.filename_prefix,
                "playlist_name": request.output.playlist_name,
                "live_playlist_name": "",
                "segment_duration": request.output.segment_duration,
                "protocol": 0,
                "s3": request.storage.model_dump(),
            }
        ],
    }


class LiveKitEgressClient:
    """
    `CaptureProvider` backed by httpx. Transport errors and timeouts are
    retried up to `max_retries` times; HTTP error responses are not.

    `timeout` applies to the client built here. An injected `client` keeps
    its own timeout.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        body: dict,
        *,
        admin_token: str,
        error: type[CoordinatorError],
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {admin_token}"}
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.post(
                    url, json=body, headers=headers
                )
            except httpx.TransportError as exc:
                logger.warning(
                    "egress call %s failed (attempt %d/%d): %r",
                    path,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt == attempts:
                    raise error(f"Egress API unreachable: {exc}") from exc
                continue

            if response.is_error:
                logger.error(
                    "egress API error %s: %s",
                    response.status_code,
                    response.text,
                )
                raise error(
                    f"Egress API error {response.status_code}: {response.text}"
                )
            return response

        raise AssertionError("unreachable")

    async def start_job(
        self, request: CaptureRequest, *, admin_token: str
    ) -> CaptureJob:
        response = await self._post(
            START_PATH,
            start_payload(request),
            admin_token=admin_token,
            error=CaptureStartFailed,
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise CaptureStartFailed("Malformed egress response") from exc

        job_id = data.get("egress_id") if isinstance(data, dict) else None
        if not job_id:
            raise CaptureStartFailed("Egress response has no egress_id")

        return CaptureJob(
            job_id=job_id,
            session_name=request.session_name,
            output_path_prefix=request.output_path_prefix,
        )

    async def stop_job(self, job_id: str, *, admin_token: str) -> None:
        await self._post(
            STOP_PATH,
            {"egress_id": job_id},
            admin_token=admin_token,
            error=StopFailed,
        )

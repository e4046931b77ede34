import json

import httpx
import pytest
from pydantic import ValidationError

from shiftcam.api import create_app
from shiftcam.config import Settings
from shiftcam.egress import START_PATH, STOP_PATH, LiveKitEgressClient
from shiftcam.errors import CaptureStartFailed, StopFailed
from shiftcam.models import CaptureRequest
from shiftcam.storage import (
    output_path_prefix,
    segmented_output,
    session_name_for,
    upload_target,
)


def _request(settings) -> CaptureRequest:
    return CaptureRequest(
        session_name=session_name_for("S1"),
        output_path_prefix=output_path_prefix("S1", "E1"),
        output=segmented_output(settings, "S1", "E1"),
        storage=upload_target(settings),
    )


def _client(handler, *, max_retries: int = 2) -> LiveKitEgressClient:
    return LiveKitEgressClient(
        "https://livekit.example.test/",
        max_retries=max_retries,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_start_job_sends_segmented_request(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"egress_id": "EG_abc"})

    client = _client(handler)
    job = await client.start_job(_request(settings), admin_token="admin-jwt")
    await client.aclose()

    assert job.job_id == "EG_abc"
    assert job.session_name == "shift-S1"
    assert job.output_path_prefix == "S1/E1/"

    (request,) = seen
    assert str(request.url) == "https://livekit.example.test" + START_PATH
    assert request.headers["Authorization"] == "Bearer admin-jwt"
    body = json.loads(request.content)
    assert body["room_name"] == "shift-S1"
    assert body["layout"] == "grid"
    (output,) = body["segment_outputs"]
    assert output["filename_prefix"] == "S1/E1/chunk_"
    assert output["playlist_name"] == "S1/E1/playlist.m3u8"
    assert output["segment_duration"] == 60
    assert output["s3"] == {
        "access_key": "spaces-key",
        "secret": "spaces-secret",
        "region": "sgp1",
        "endpoint": "https://sgp1.digitaloceanspaces.com",
        "bucket": "recordings",
        "force_path_style": False,
    }


@pytest.mark.asyncio
async def test_start_job_non_2xx_is_not_retried(settings) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, text="permission denied")

    client = _client(handler)
    with pytest.raises(CaptureStartFailed) as excinfo:
        await client.start_job(_request(settings), admin_token="t")
    await client.aclose()

    assert len(calls) == 1
    assert "403" in excinfo.value.message


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_surface(settings) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, max_retries=2)
    with pytest.raises(CaptureStartFailed):
        await client.start_job(_request(settings), admin_token="t")
    await client.aclose()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_transient_error_recovers(settings) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"egress_id": "EG_retry"})

    client = _client(handler)
    job = await client.start_job(_request(settings), admin_token="t")
    await client.aclose()
    assert job.job_id == "EG_retry"
    assert len(calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"status": "EGRESS_STARTING"}),
        httpx.Response(200, json=["EG_1"]),
    ],
)
async def test_malformed_start_response(settings, response) -> None:
    client = _client(lambda request: response)
    with pytest.raises(CaptureStartFailed):
        await client.start_job(_request(settings), admin_token="t")
    await client.aclose()


@pytest.mark.asyncio
async def test_stop_job() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"egress_id": "EG_1"})

    client = _client(handler)
    await client.stop_job("EG_1", admin_token="admin-jwt")
    await client.aclose()

    (request,) = seen
    assert request.url.path == STOP_PATH
    assert json.loads(request.content) == {"egress_id": "EG_1"}


@pytest.mark.asyncio
async def test_stop_job_failure() -> None:
    client = _client(lambda request: httpx.Response(404, text="not found"))
    with pytest.raises(StopFailed):
        await client.stop_job("EG_gone", admin_token="t")
    await client.aclose()


@pytest.mark.asyncio
async def test_create_app_applies_provider_timeout(settings) -> None:
    settings = settings.model_copy(
        update={"provider_timeout_seconds": 7, "provider_max_retries": 1}
    )
    app = create_app(settings)
    client = app.state.provider

    assert isinstance(client, LiveKitEgressClient)
    assert client.base_url == "https://livekit.example.test"
    assert client.max_retries == 1
    assert client._client.timeout == httpx.Timeout(7)
    await client.aclose()


def test_provider_timeout_from_env() -> None:
    settings = Settings.from_env(
        {"PROVIDER_TIMEOUT_SECONDS": "7.5", "PROVIDER_MAX_RETRIES": "0"}
    )
    assert settings.provider_timeout_seconds == 7.5
    assert settings.provider_max_retries == 0
    assert Settings().provider_timeout_seconds == 30


@pytest.mark.parametrize(
    "values",
    [
        {"provider_max_retries": -1},
        {"provider_timeout_seconds": 0},
        {"provider_timeout_seconds": -5},
    ],
)
def test_provider_limits_are_validated(values) -> None:
    with pytest.raises(ValidationError):
        Settings(**values)

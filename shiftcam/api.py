import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from shiftcam.capture import start_capture, stop_capture
from shiftcam.config import Settings, configure_logging
from shiftcam.credentials import verify_bearer
from shiftcam.database import InMemoryRegistry
from shiftcam.egress import CaptureProvider, LiveKitEgressClient
from shiftcam.errors import (
    ConfigurationError,
    CoordinatorError,
    InvalidSignature,
    RecordingNotFound,
)
from shiftcam.models import (
    Identity,
    Recording,
    ShiftRequest,
    StartCaptureResponse,
    StopCaptureResponse,
    StopRequest,
    TokenResponse,
)
from shiftcam.tokens import issue_token
from shiftcam.webhook import CallbackReconciler

logger = logging.getLogger(__name__)

router = APIRouter()

NowFn = Callable[[], datetime]


async def current_caller(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    settings: Settings = request.app.state.settings
    return verify_bearer(authorization, secret=settings.auth_jwt_secret)


Caller = Annotated[Identity, Depends(current_caller)]


def _provider(request: Request) -> CaptureProvider:
    provider = request.app.state.provider
    if provider is None:
        raise ConfigurationError("LiveKit not configured")
    return provider


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/tokens")
async def create_token(
    body: ShiftRequest, caller: Caller, request: Request
) -> TokenResponse:
    state = request.app.state
    token = await issue_token(
        caller,
        body.shift_id,
        shifts=state.registry,
        profiles=state.registry,
        settings=state.settings,
        now=state.now_fn(),
    )
    return TokenResponse(
        token=token.jwt,
        session_name=token.session_name,
        caller_identity=token.subject,
    )


@router.post("/captures/start")
async def start_capture_route(
    body: ShiftRequest, caller: Caller, request: Request
) -> StartCaptureResponse:
    state = request.app.state
    return await start_capture(
        caller,
        body.shift_id,
        shifts=state.registry,
        recordings=state.registry,
        provider=_provider(request),
        settings=state.settings,
        now=state.now_fn(),
    )


@router.post("/captures/stop")
async def stop_capture_route(
    body: StopRequest, caller: Caller, request: Request
) -> StopCaptureResponse:
    state = request.app.state
    await stop_capture(
        caller,
        body.job_id,
        recordings=state.registry,
        provider=_provider(request),
        settings=state.settings,
        now=state.now_fn(),
    )
    return StopCaptureResponse(success=True)


@router.get("/recordings/{job_id}")
async def get_recording(
    job_id: str, caller: Caller, request: Request
) -> Recording:
    recording = await request.app.state.registry.get_recording(job_id)
    if recording is None:
        raise RecordingNotFound()
    return recording


@router.post("/webhooks/provider")
async def provider_webhook(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> PlainTextResponse:
    # called by the provider, not a user: plain-text replies, no JSON
    body = await request.body()
    reconciler: CallbackReconciler = request.app.state.reconciler
    try:
        await reconciler.handle(
            body, authorization, now=request.app.state.now_fn()
        )
    except (InvalidSignature, ConfigurationError) as exc:
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return PlainTextResponse("ok")


async def coordinator_error_handler(
    request: Request, exc: CoordinatorError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


async def unexpected_error_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    # the server error middleware re-raises after this reply, and the ASGI
    # server logs the traceback
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Settings | None = None,
    *,
    registry: InMemoryRegistry | None = None,
    provider: CaptureProvider | None = None,
    now_fn: NowFn | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)

    owned_client: LiveKitEgressClient | None = None
    if provider is None and settings.provider_configured:
        owned_client = LiveKitEgressClient(
            settings.livekit_api_url,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        )
        provider = owned_client

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        if owned_client is not None:
            await owned_client.aclose()

    app = FastAPI(title="shiftcam", lifespan=lifespan)

    app.state.settings = settings
    if registry is None:
        registry = InMemoryRegistry()
    app.state.registry = registry
    app.state.provider = provider
    app.state.now_fn = now_fn or (lambda: datetime.now(UTC))
    app.state.reconciler = CallbackReconciler(app.state.registry, settings)

    app.add_exception_handler(CoordinatorError, coordinator_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(router)
    return app

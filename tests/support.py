import time

import jwt

from shiftcam.models import CaptureJob, CaptureRequest
from shiftcam.webhook import body_digest

API_KEY = "APIdevkey"
API_SECRET = "livekit-api-secret-for-tests-0123456789"
USER_JWT_SECRET = "supabase-jwt-secret-for-tests-0123456789"
STORAGE_BASE = "https://sgp1.digitaloceanspaces.com/recordings"


def _p(msg: str) -> None:
    # pytest captures stdout unless you run with -s
    print(msg, flush=True)


def _banner(name: str) -> None:
    _p("\n" + "=" * 88)
    _p(f"test: {name}")
    _p("=" * 88)


def make_bearer(
    sub: str | None = "E1",
    *,
    email: str = "",
    role: str = "authenticated",
    secret: str = USER_JWT_SECRET,
    **extra,
) -> str:
    claims: dict = {"role": role, "email": email, **extra}
    if sub is not None:
        claims["sub"] = sub
    return "Bearer " + jwt.encode(claims, secret, algorithm="HS256")


def sign_webhook(
    body: bytes, *, secret: str = API_SECRET, issuer: str = API_KEY
) -> str:
    now = int(time.time())
    return jwt.encode(
        {
            "iss": issuer,
            "sha256": body_digest(body),
            "nbf": now,
            "exp": now + 600,
        },
        secret,
        algorithm="HS256",
    )


class FakeCaptureProvider:
    """In-memory capture provider; job ids are EG_1, EG_2, ..."""

    def __init__(self) -> None:
        self.started: list[CaptureRequest] = []
        self.stopped: list[str] = []
        self.admin_tokens: list[str] = []
        self.start_error: Exception | None = None
        self.stop_error: Exception | None = None
        self._counter = 0

    async def start_job(
        self, request: CaptureRequest, *, admin_token: str
    ) -> CaptureJob:
        self.admin_tokens.append(admin_token)
        if self.start_error is not None:
            raise self.start_error
        self._counter += 1
        self.started.append(request)
        return CaptureJob(
            job_id=f"EG_{self._counter}",
            session_name=request.session_name,
            output_path_prefix=request.output_path_prefix,
        )

    async def stop_job(self, job_id: str, *, admin_token: str) -> None:
        self.admin_tokens.append(admin_token)
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped.append(job_id)

import logging
from datetime import datetime, timedelta

import jwt

from shiftcam.config import Settings
from shiftcam.database import ProfileRegistry, ShiftRegistry
from shiftcam.errors import (
    ConfigurationError,
    MissingField,
    ProfileNotFound,
    SessionNotFound,
)
from shiftcam.models import (
    CapabilityToken,
    Identity,
    Role,
    ShiftStatus,
)
from shiftcam.storage import session_name_for

logger = logging.getLogger(__name__)

ADMIN_IDENTITY = "egress-admin"


def encode_access_token(
    *,
    api_key: str,
    api_secret: str,
    identity: str,
    grant: dict,
    now: datetime,
    ttl: timedelta,
    name: str | None = None,
) -> str:
    """Sign a provider access token (HS256, grants under `video`)."""
    claims = {
        "iss": api_key,
        "sub": identity,
        "nbf": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
        "video": grant,
    }
    if name:
        claims["name"] = name
    return jwt.encode(claims, api_secret, algorithm="HS256")


def mint_admin_token(settings: Settings, now: datetime) -> str:
    """
    Short-lived room-admin capability for a single egress API call. Carries
    no room join or publish rights.
    """
    if not settings.livekit_api_key or not settings.livekit_api_secret:
        raise ConfigurationError("LiveKit not configured")
    return encode_access_token(
        api_key=settings.livekit_api_key,
        api_secret=settings.livekit_api_secret,
        identity=ADMIN_IDENTITY,
        grant={
            "roomCreate": True,
            "roomList": True,
            "roomAdmin": True,
            "roomRecord": True,
        },
        now=now,
        ttl=settings.admin_token_ttl,
    )


async def issue_token(
    caller: Identity,
    shift_id: str | None,
    *,
    shifts: ShiftRegistry,
    profiles: ProfileRegistry,
    settings: Settings,
    now: datetime,
) -> CapabilityToken:
    if not shift_id:
        raise MissingField("shift_id is required")

    profile = await profiles.get_profile(caller.subject_id)
    if profile is None:
        raise ProfileNotFound()

    shift = await shifts.get_shift(shift_id)
    if shift is None or shift.status != ShiftStatus.ACTIVE:
        raise SessionNotFound()

    if not settings.livekit_api_key or not settings.livekit_api_secret:
        raise ConfigurationError("LiveKit not configured")

    session_name = session_name_for(shift_id)
    display_name = profile.name or caller.subject_email or "Unknown"
    # managers only watch; employees publish their camera
    can_publish = profile.role != Role.MANAGER
    can_subscribe = True

    token = encode_access_token(
        api_key=settings.livekit_api_key,
        api_secret=settings.livekit_api_secret,
        identity=caller.subject_id,
        name=display_name,
        grant={
            "room": session_name,
            "roomJoin": True,
            "canPublish": can_publish,
            "canSubscribe": can_subscribe,
            "canPublishData": True,
        },
        now=now,
        ttl=settings.participant_token_ttl,
    )
    logger.info(
        "issued %s token for %s in %s",
        profile.role.value,
        caller.subject_id,
        session_name,
    )
    return CapabilityToken(
        subject=caller.subject_id,
        display_name=display_name,
        session_name=session_name,
        can_publish=can_publish,
        can_subscribe=can_subscribe,
        expiry=now + settings.participant_token_ttl,
        jwt=token,
    )

import threading
from collections.abc import Callable, MutableMapping
from datetime import datetime
from typing import Generic, Protocol, TypeVar

from shiftcam.models import Profile, Recording, RecordingStatus, Shift

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.Lock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def put_if_absent(self, key: K, value: V) -> bool:
        with self._lock:
            if key in self._store:
                return False
            self._store[key] = value
            return True

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def all(self) -> list[V]:
        return list(self._store.values())

    def update_if(
        self,
        key: K,
        predicate: Callable[[V], bool],
        update: Callable[[V], V],
    ) -> V | None:
        """
        Atomically replace the value at `key` with `update(value)` if
        `predicate(value)` holds. Returns the new value, or None if the key
        is missing or the predicate failed.
        """
        with self._lock:
            value = self._store.get(key)
            if value is None or not predicate(value):
                return None
            new_value = update(value)
            self._store[key] = new_value
            return new_value


class ShiftRegistry(Protocol):
    async def get_shift(self, shift_id: str) -> Shift | None: ...


class ProfileRegistry(Protocol):
    async def get_profile(self, user_id: str) -> Profile | None: ...


class RecordingRegistry(Protocol):
    async def insert_recording(self, recording: Recording) -> Recording: ...

    async def get_recording(self, job_id: str) -> Recording | None: ...

    async def finalize_if_recording(
        self,
        job_id: str,
        *,
        status: RecordingStatus,
        ended_at: datetime,
        storage_location: str | None,
    ) -> bool:
        """
        Compare-and-set: move the row for `job_id` to a terminal status only
        if it is still `recording`. True if this call made the transition.
        """
        ...

    async def record_progress(self, job_id: str, chunk_count: int) -> bool: ...


class DuplicateJobId(Exception):
    pass


def _still_recording(recording: Recording) -> bool:
    return recording.status is RecordingStatus.RECORDING


class InMemoryRegistry:
    """
    Shift, profile and recording registries backed by one key/value store.
    Keys are `shift:<id>`, `profile:<id>` and `recording:<job_id>`.
    """

    def __init__(
        self,
        db: InMemoryKeyValueDatabase[str, Shift | Profile | Recording]
        | None = None,
    ) -> None:
        self.db: InMemoryKeyValueDatabase[str, Shift | Profile | Recording] = (
            db if db is not None else InMemoryKeyValueDatabase()
        )

    def add_shift(self, shift: Shift) -> None:
        self.db.put(f"shift:{shift.id}", shift)

    def add_profile(self, profile: Profile) -> None:
        self.db.put(f"profile:{profile.id}", profile)

    def recordings(self) -> list[Recording]:
        return [r for r in self.db.all() if isinstance(r, Recording)]

    async def get_shift(self, shift_id: str) -> Shift | None:
        shift = self.db.get(f"shift:{shift_id}")
        return shift if isinstance(shift, Shift) else None

    async def get_profile(self, user_id: str) -> Profile | None:
        profile = self.db.get(f"profile:{user_id}")
        return profile if isinstance(profile, Profile) else None

    async def insert_recording(self, recording: Recording) -> Recording:
        key = f"recording:{recording.job_id}"
        if not self.db.put_if_absent(key, recording):
            raise DuplicateJobId(recording.job_id)
        return recording

    async def get_recording(self, job_id: str) -> Recording | None:
        recording = self.db.get(f"recording:{job_id}")
        if not isinstance(recording, Recording):
            return None
        return recording.model_copy()

    async def finalize_if_recording(
        self,
        job_id: str,
        *,
        status: RecordingStatus,
        ended_at: datetime,
        storage_location: str | None,
    ) -> bool:
        if not status.terminal:
            raise ValueError(f"{status} is not a terminal status")
        updated = self.db.update_if(
            f"recording:{job_id}",
            lambda r: isinstance(r, Recording) and _still_recording(r),
            lambda r: r.model_copy(
                update={
                    "status": status,
                    "ended_at": ended_at,
                    "storage_location": storage_location,
                }
            ),
        )
        return updated is not None

    async def record_progress(self, job_id: str, chunk_count: int) -> bool:
        updated = self.db.update_if(
            f"recording:{job_id}",
            lambda r: isinstance(r, Recording)
            and _still_recording(r)
            and chunk_count > r.chunk_count,
            lambda r: r.model_copy(update={"chunk_count": chunk_count}),
        )
        return updated is not None

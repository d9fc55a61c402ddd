"""Registration staging store.

Holds not-yet-verified signups keyed by email. Every write carries a TTL after which
the entry disappears on its own; the gate still re-checks the OTP expiry against the
wall clock. Writes are condition-checked (insert-if-absent, replace-if-present,
get-and-delete, delete-if-unchanged, count-attempt-if-same-code) so concurrent
requests cannot overwrite each other's codes.
"""
from __future__ import annotations

import abc
import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable

import redis
from redis.exceptions import WatchError
from pydantic import BaseModel

from teletabib.config import Settings, get_settings
from teletabib.models.user import UserRole

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DoctorDetails(BaseModel):
    first_name: str
    last_name: str
    city: str
    speciality: str
    pmdc: str
    experience: str | None = None
    message: str | None = None


class PendingRegistration(BaseModel):
    """Signup data waiting for its one-time code."""

    email: str
    hashed_password: str
    name: str
    contact_number: str
    phone: str | None = None
    role: UserRole = UserRole.patient
    doctor: DoctorDetails | None = None
    otp: str
    otp_expires_at: datetime
    created_at: datetime
    attempts: int = 0

    def is_expired(self, now: datetime) -> bool:
        # The code is still accepted at exactly otp_expires_at
        return now > self.otp_expires_at


class StagingStore(abc.ABC):
    @abc.abstractmethod
    def get(self, email: str) -> PendingRegistration | None:
        """Current entry for email, or None."""

    @abc.abstractmethod
    def put(self, email: str, record: PendingRegistration, ttl: timedelta) -> None:
        """Insert or overwrite (last write wins)."""

    @abc.abstractmethod
    def put_if_absent(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        """Insert only if no live entry exists. Returns False if one does."""

    @abc.abstractmethod
    def replace(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        """Overwrite only if a live entry exists. Returns False if none does."""

    @abc.abstractmethod
    def pop(self, email: str) -> PendingRegistration | None:
        """Atomically remove and return the entry."""

    @abc.abstractmethod
    def delete(self, email: str) -> None:
        """Remove the entry; no error if absent."""

    @abc.abstractmethod
    def delete_if(self, email: str, expected: PendingRegistration) -> bool:
        """Remove the entry only if it still equals expected. Returns True if removed."""

    @abc.abstractmethod
    def record_failed_attempt(self, email: str, expected_otp: str) -> int | None:
        """Atomically bump attempts if the stored code is still expected_otp.

        Returns the new count, or None when the entry is gone or its code changed.
        The entry keeps its TTL.
        """

    @abc.abstractmethod
    def clear(self) -> int:
        """Remove every entry. Returns how many were removed."""

    def purge_expired(self) -> int:
        """Drop entries whose TTL has elapsed. Returns how many were dropped."""
        return 0


class InMemoryStagingStore(StagingStore):
    """Process-local store. Entries are lost on restart and not shared between workers."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._entries: dict[str, tuple[PendingRegistration, datetime]] = {}
        self._lock = threading.Lock()

    def _live(self, email: str) -> PendingRegistration | None:
        # caller holds the lock
        item = self._entries.get(email)
        if item is None:
            return None
        record, deadline = item
        if self._clock() >= deadline:
            del self._entries[email]
            return None
        return record

    def _store(self, email: str, record: PendingRegistration, ttl: timedelta) -> None:
        self._entries[email] = (record.model_copy(), self._clock() + ttl)

    def get(self, email: str) -> PendingRegistration | None:
        with self._lock:
            record = self._live(email)
            return record.model_copy() if record is not None else None

    def put(self, email: str, record: PendingRegistration, ttl: timedelta) -> None:
        with self._lock:
            self._store(email, record, ttl)

    def put_if_absent(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        with self._lock:
            if self._live(email) is not None:
                return False
            self._store(email, record, ttl)
            return True

    def replace(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        with self._lock:
            if self._live(email) is None:
                return False
            self._store(email, record, ttl)
            return True

    def pop(self, email: str) -> PendingRegistration | None:
        with self._lock:
            record = self._live(email)
            if record is not None:
                del self._entries[email]
            return record

    def delete(self, email: str) -> None:
        with self._lock:
            self._entries.pop(email, None)

    def delete_if(self, email: str, expected: PendingRegistration) -> bool:
        with self._lock:
            if self._live(email) != expected:
                return False
            del self._entries[email]
            return True

    def record_failed_attempt(self, email: str, expected_otp: str) -> int | None:
        with self._lock:
            record = self._live(email)
            if record is None or record.otp != expected_otp:
                return None
            # stored record is a private copy; the deadline is untouched
            record.attempts += 1
            return record.attempts

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [email for email, (_, deadline) in self._entries.items() if now >= deadline]
            for email in expired:
                del self._entries[email]
            return len(expired)


class RedisStagingStore(StagingStore):
    """Shared store for multi-instance deployments. Redis expires keys itself."""

    KEY_PREFIX = "teletabib:pending:"

    def __init__(self, client: redis.Redis):
        self.redis = client

    def _key(self, email: str) -> str:
        return f"{self.KEY_PREFIX}{email}"

    @staticmethod
    def _seconds(ttl: timedelta) -> int:
        return max(1, math.ceil(ttl.total_seconds()))

    @staticmethod
    def _load(raw: str | None) -> PendingRegistration | None:
        return PendingRegistration.model_validate_json(raw) if raw else None

    def get(self, email: str) -> PendingRegistration | None:
        raw = self.redis.get(self._key(email))
        return self._load(raw)

    def put(self, email: str, record: PendingRegistration, ttl: timedelta) -> None:
        self.redis.set(self._key(email), record.model_dump_json(), ex=self._seconds(ttl))

    def put_if_absent(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        return bool(self.redis.set(self._key(email), record.model_dump_json(), ex=self._seconds(ttl), nx=True))

    def replace(self, email: str, record: PendingRegistration, ttl: timedelta) -> bool:
        return bool(self.redis.set(self._key(email), record.model_dump_json(), ex=self._seconds(ttl), xx=True))

    def pop(self, email: str) -> PendingRegistration | None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.get(self._key(email))
        pipe.delete(self._key(email))
        raw, _ = pipe.execute()
        return self._load(raw)

    def delete(self, email: str) -> None:
        self.redis.delete(self._key(email))

    def delete_if(self, email: str, expected: PendingRegistration) -> bool:
        key = self._key(email)
        with self.redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    if self._load(pipe.get(key)) != expected:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    pipe.execute()
                    return True
                except WatchError:
                    # key changed between GET and EXEC; re-read
                    continue

    def record_failed_attempt(self, email: str, expected_otp: str) -> int | None:
        key = self._key(email)
        with self.redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    record = self._load(pipe.get(key))
                    if record is None or record.otp != expected_otp:
                        pipe.unwatch()
                        return None
                    record.attempts += 1
                    pipe.multi()
                    pipe.set(key, record.model_dump_json(), keepttl=True)
                    pipe.execute()
                    return record.attempts
                except WatchError:
                    continue

    def clear(self) -> int:
        count = 0
        for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            count += self.redis.delete(key)
        return count


def create_staging_store(settings: Settings) -> StagingStore:
    if settings.staging_backend == "redis":
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        logger.info("[Staging] Using Redis staging store at %s", settings.redis_url.rsplit("@", 1)[-1])
        return RedisStagingStore(client)
    logger.info("[Staging] Using in-memory staging store (single process only)")
    return InMemoryStagingStore()


@lru_cache
def get_staging_store() -> StagingStore:
    return create_staging_store(get_settings())


def run_staging_sweep_job(store: StagingStore | None = None) -> int:
    """Scheduled job: drop staged signups whose retention TTL has elapsed."""
    store = store or get_staging_store()
    purged = store.purge_expired()
    if purged:
        logger.info("[Staging] Purged %d expired pending registration(s)", purged)
    return purged

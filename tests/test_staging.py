import threading
from datetime import timedelta

import fakeredis
import pytest

from teletabib.services.staging import (
    InMemoryStagingStore,
    PendingRegistration,
    RedisStagingStore,
    run_staging_sweep_job,
)

TTL = timedelta(minutes=4)


def _record(clock, email="a@x.com", otp="111111", **overrides):
    now = clock()
    data = dict(
        email=email,
        hashed_password="hash",
        name="Alice",
        contact_number="555-0100",
        otp=otp,
        otp_expires_at=now + timedelta(minutes=3),
        created_at=now,
    )
    data.update(overrides)
    return PendingRegistration(**data)


def test_pending_registration_expiry_is_inclusive(clock):
    record = _record(clock)
    assert not record.is_expired(record.otp_expires_at)
    assert record.is_expired(record.otp_expires_at + timedelta(milliseconds=1))


def test_put_and_get(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    assert store.get("a@x.com").otp == "111111"
    assert store.get("b@x.com") is None


def test_put_is_last_write_wins(store, clock):
    store.put("a@x.com", _record(clock, otp="111111"), TTL)
    store.put("a@x.com", _record(clock, otp="222222"), TTL)
    assert store.get("a@x.com").otp == "222222"


def test_put_if_absent_rejects_second_writer(store, clock):
    assert store.put_if_absent("a@x.com", _record(clock, otp="111111"), TTL)
    assert not store.put_if_absent("a@x.com", _record(clock, otp="222222"), TTL)
    assert store.get("a@x.com").otp == "111111"


def test_put_if_absent_after_ttl_elapsed(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    clock.advance(minutes=5)
    assert store.put_if_absent("a@x.com", _record(clock, otp="333333"), TTL)
    assert store.get("a@x.com").otp == "333333"


def test_replace_only_existing(store, clock):
    assert not store.replace("a@x.com", _record(clock), TTL)
    assert store.get("a@x.com") is None
    store.put("a@x.com", _record(clock), TTL)
    assert store.replace("a@x.com", _record(clock, otp="999999"), TTL)
    assert store.get("a@x.com").otp == "999999"


def test_entries_vanish_after_ttl(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    clock.advance(minutes=3, seconds=59)
    assert store.get("a@x.com") is not None
    clock.advance(seconds=1)
    assert store.get("a@x.com") is None


def test_pop_returns_once(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    assert store.pop("a@x.com").email == "a@x.com"
    assert store.pop("a@x.com") is None


def test_delete_is_idempotent(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    store.delete("a@x.com")
    store.delete("a@x.com")
    assert store.get("a@x.com") is None


def test_get_returns_a_copy(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    fetched = store.get("a@x.com")
    fetched.attempts = 4
    assert store.get("a@x.com").attempts == 0


def test_clear_counts_entries(store, clock):
    store.put("a@x.com", _record(clock), TTL)
    store.put("b@x.com", _record(clock, email="b@x.com"), TTL)
    assert store.clear() == 2
    assert store.get("a@x.com") is None
    assert store.get("b@x.com") is None
    assert store.clear() == 0


def test_sweep_job_purges_only_elapsed_entries(store, clock):
    store.put("a@x.com", _record(clock), timedelta(minutes=1))
    store.put("b@x.com", _record(clock, email="b@x.com"), timedelta(minutes=10))
    clock.advance(minutes=2)
    assert run_staging_sweep_job(store) == 1
    assert store.get("b@x.com") is not None


def test_put_if_absent_is_atomic_across_threads(clock):
    store = InMemoryStagingStore(clock=clock)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        ok = store.put_if_absent("race@x.com", _record(clock, email="race@x.com", otp=f"{i:06d}"), TTL)
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert results.count(False) == 7


@pytest.fixture
def redis_store():
    return RedisStagingStore(fakeredis.FakeRedis(decode_responses=True))


def test_redis_store_conditional_writes(redis_store, clock):
    assert redis_store.put_if_absent("a@x.com", _record(clock, otp="111111"), TTL)
    assert not redis_store.put_if_absent("a@x.com", _record(clock, otp="222222"), TTL)
    assert redis_store.get("a@x.com").otp == "111111"

    assert not redis_store.replace("b@x.com", _record(clock, email="b@x.com"), TTL)
    assert redis_store.get("b@x.com") is None
    assert redis_store.replace("a@x.com", _record(clock, otp="333333", attempts=2), TTL)
    fetched = redis_store.get("a@x.com")
    assert fetched.otp == "333333"
    assert fetched.attempts == 2
    assert fetched.otp_expires_at == _record(clock).otp_expires_at


def test_redis_store_sets_ttl(redis_store, clock):
    redis_store.put("a@x.com", _record(clock), timedelta(seconds=90))
    ttl = redis_store.redis.ttl(redis_store._key("a@x.com"))
    assert 0 < ttl <= 90


def test_redis_store_pop_and_clear(redis_store, clock):
    redis_store.put("a@x.com", _record(clock), TTL)
    redis_store.put("b@x.com", _record(clock, email="b@x.com"), TTL)
    assert redis_store.pop("a@x.com").email == "a@x.com"
    assert redis_store.pop("a@x.com") is None
    redis_store.redis.set("unrelated", "1")
    assert redis_store.clear() == 1
    assert redis_store.redis.get("unrelated") == "1"
    redis_store.delete("missing@x.com")
    assert redis_store.purge_expired() == 0


def test_delete_if_only_removes_the_entry_that_was_read(store, clock):
    store.put("a@x.com", _record(clock, otp="111111"), TTL)
    seen = store.get("a@x.com")
    store.put("a@x.com", _record(clock, otp="222222"), TTL)
    assert not store.delete_if("a@x.com", seen)
    assert store.get("a@x.com").otp == "222222"
    assert store.delete_if("a@x.com", store.get("a@x.com"))
    assert store.get("a@x.com") is None
    assert not store.delete_if("a@x.com", seen)


def test_record_failed_attempt_counts_against_current_code(store, clock):
    store.put("a@x.com", _record(clock, otp="111111"), TTL)
    assert store.record_failed_attempt("a@x.com", "111111") == 1
    assert store.record_failed_attempt("a@x.com", "111111") == 2
    assert store.get("a@x.com").attempts == 2
    # a stale code leaves the entry alone
    assert store.record_failed_attempt("a@x.com", "999999") is None
    assert store.get("a@x.com").attempts == 2
    assert store.record_failed_attempt("b@x.com", "111111") is None


def test_record_failed_attempt_keeps_deadline(store, clock):
    store.put("a@x.com", _record(clock), timedelta(minutes=1))
    clock.advance(seconds=50)
    store.record_failed_attempt("a@x.com", "111111")
    clock.advance(seconds=10)
    assert store.get("a@x.com") is None


def test_record_failed_attempt_is_atomic_across_threads(clock):
    store = InMemoryStagingStore(clock=clock)
    store.put("race@x.com", _record(clock, email="race@x.com"), TTL)
    barrier = threading.Barrier(10)

    def worker():
        barrier.wait()
        store.record_failed_attempt("race@x.com", "111111")

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("race@x.com").attempts == 10


def test_redis_store_conditional_delete_and_attempts(redis_store, clock):
    redis_store.put("a@x.com", _record(clock, otp="111111"), timedelta(seconds=90))
    seen = redis_store.get("a@x.com")

    assert redis_store.record_failed_attempt("a@x.com", "111111") == 1
    assert redis_store.record_failed_attempt("a@x.com", "000000") is None
    assert 0 < redis_store.redis.ttl(redis_store._key("a@x.com")) <= 90

    # attempts moved on, so the earlier snapshot no longer matches
    assert not redis_store.delete_if("a@x.com", seen)
    assert redis_store.delete_if("a@x.com", redis_store.get("a@x.com"))
    assert redis_store.get("a@x.com") is None
    assert redis_store.record_failed_attempt("a@x.com", "111111") is None

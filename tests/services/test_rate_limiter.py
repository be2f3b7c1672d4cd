import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from genflow.models.rate_limit_window import RateLimitWindow
from genflow.repositories.rate_limit_repository import RateLimitRepository
from genflow.services.errors import PersistenceError
from genflow.services.rate_limiter import (
    RATE_LIMIT_CONFIG,
    SlidingWindowRateLimiter,
    build_rate_limit_key,
    get_rate_limit_rule,
    max_configured_window_ms,
)


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


def test_key_format():
    assert build_rate_limit_key("generate", "user_1") == "generate:user_1"
    assert build_rate_limit_key("generate", None) == "generate:anonymous"


def test_rule_tiers():
    assert get_rate_limit_rule("generate", "user_1").limit == 60
    assert get_rate_limit_rule("generate", None).limit == 10
    assert get_rate_limit_rule("enhance-prompt", "user_1").limit == 10
    assert get_rate_limit_rule("suggestions", None).limit == 5
    assert max_configured_window_ms() == 60_000


def test_unknown_endpoint_raises():
    with pytest.raises(ValueError):
        get_rate_limit_rule("does-not-exist", "user_1")


def test_admits_up_to_limit_then_denies(db):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(db, clock=clock)

    remaining = [limiter.admit("generate:u1", 3, 60_000).remaining for _ in range(3)]
    assert remaining == [2, 1, 0]

    clock.now += 10_000
    denied = limiter.admit("generate:u1", 3, 60_000)
    assert not denied.allowed
    assert denied.remaining == 0
    assert denied.retry_after_ms == 50_000
    assert denied.reset_at_ms == 1_060_000


def test_window_resets_after_expiry(db):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(db, clock=clock)
    for _ in range(3):
        limiter.admit("generate:u1", 3, 60_000)
    assert not limiter.admit("generate:u1", 3, 60_000).allowed

    clock.now += 60_000
    decision = limiter.admit("generate:u1", 3, 60_000)
    assert decision.allowed
    assert decision.remaining == 2

    window = db.query(RateLimitWindow).filter_by(key="generate:u1").one()
    assert window.count == 1
    assert window.window_start_ms == clock.now


def test_denied_requests_do_not_consume(db):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(db, clock=clock)
    limiter.admit("k", 1, 1000)
    limiter.admit("k", 1, 1000)
    limiter.admit("k", 1, 1000)

    assert db.query(RateLimitWindow).filter_by(key="k").one().count == 1


def test_keys_are_independent(db):
    limiter = SlidingWindowRateLimiter(db, clock=FakeClock())
    assert limiter.admit("generate:a", 1, 60_000).allowed
    assert not limiter.admit("generate:a", 1, 60_000).allowed
    assert limiter.admit("generate:b", 1, 60_000).allowed


def test_admit_endpoint_uses_tier(db):
    limiter = SlidingWindowRateLimiter(db, clock=FakeClock())
    anonymous_limit = RATE_LIMIT_CONFIG["enhance-prompt"]["anonymous"].limit

    results = [limiter.admit_endpoint("enhance-prompt", None).allowed for _ in range(anonymous_limit + 1)]
    assert results == [True] * anonymous_limit + [False]
    assert db.query(RateLimitWindow).filter_by(key="enhance-prompt:anonymous").one().count == anonymous_limit


def test_status_does_not_consume(db):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(db, clock=clock)

    fresh = limiter.status("generate:u1", 5, 60_000)
    assert fresh.allowed
    assert fresh.remaining == 5

    limiter.admit("generate:u1", 5, 60_000)
    assert limiter.status("generate:u1", 5, 60_000).remaining == 4
    assert limiter.status("generate:u1", 5, 60_000).remaining == 4


def test_cleanup_removes_only_stale_windows(db):
    clock = FakeClock(now=0)
    limiter = SlidingWindowRateLimiter(db, clock=clock)
    limiter.admit("old", 5, 60_000)

    clock.now = 100_000
    limiter.admit("recent", 5, 60_000)

    clock.now = 130_001
    deleted = limiter.cleanup_expired(max_window_ms=60_000)

    assert deleted == 1
    assert [w.key for w in db.query(RateLimitWindow).all()] == ["recent"]


def test_admit_retries_after_losing_first_insert_race(db, monkeypatch):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(db, clock=clock)
    attempts = []

    def add_after_concurrent_insert(session, key, count, window_start_ms):
        attempts.append(key)
        if len(attempts) == 1:
            # Another worker creates and commits the window between our read and insert.
            session.add(RateLimitWindow(key=key, count=1, window_start_ms=window_start_ms))
            session.commit()
            raise IntegrityError("INSERT INTO rate_limit_windows", {}, Exception("UNIQUE constraint failed"))
        raise AssertionError("window should exist on the second pass")

    monkeypatch.setattr(RateLimitRepository, "add", staticmethod(add_after_concurrent_insert))

    decision = limiter.admit("generate:u1", 5, 60_000)

    assert decision.allowed
    assert decision.remaining == 3
    assert attempts == ["generate:u1"]
    assert db.query(RateLimitWindow).filter_by(key="generate:u1").one().count == 2


def test_admit_gives_up_when_window_creation_keeps_conflicting(db, monkeypatch):
    limiter = SlidingWindowRateLimiter(db, clock=FakeClock())

    def always_conflicts(session, key, count, window_start_ms):
        raise IntegrityError("INSERT INTO rate_limit_windows", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(RateLimitRepository, "add", staticmethod(always_conflicts))

    with pytest.raises(PersistenceError, match="kept conflicting"):
        limiter.admit("generate:u1", 5, 60_000)
    assert db.query(RateLimitWindow).count() == 0


def test_status_wraps_database_errors(db, monkeypatch):
    def missing_table(session, key):
        raise OperationalError("SELECT", {}, Exception("no such table: rate_limit_windows"))

    monkeypatch.setattr(RateLimitRepository, "get", staticmethod(missing_table))

    with pytest.raises(PersistenceError, match="no such table"):
        SlidingWindowRateLimiter(db, clock=FakeClock()).status("generate:u1", 5, 60_000)

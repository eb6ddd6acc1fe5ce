"""Shared test fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from itop_notify.database.base import Base, enable_sqlite_savepoints
from itop_notify.integrations.cache import TTLCache
from itop_notify.notifications.models import Notification
from itop_notify.preferences.models import AppConfigValue, UserPreference
from itop_notify.preferences.repository import ConfigRepository
from itop_notify.users.models import User

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [User, UserPreference, AppConfigValue, Notification]

# 2025-11-05 12:00:00 UTC
NOW = 1762344000


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryCacheService:
    """CacheService fake; ignores the backend TTL so TTLCache does the expiring."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.store[key] = value

    def delete(self, key: str) -> None:
        self.store.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self.store if k.startswith(prefix)]
        for key in keys:
            del self.store[key]
        return len(keys)

    def ping(self) -> bool:
        return True


class FakeItopClient:
    """Scripted stand-in for ItopClient.core_get.

    ``on(cls, *fragments, objects=...)`` registers a response for queries on
    ``cls`` whose key contains every fragment; the last matching rule wins.
    Unmatched queries return no objects.
    """

    def __init__(self) -> None:
        self.rules: list[tuple[str, tuple[str, ...], object]] = []
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    def on(self, cls: str, *fragments: str, objects=None, error: Exception | None = None) -> None:
        self.rules.append((cls, fragments, error if error is not None else (objects or {})))

    def core_get(self, user_id, cls, key, output_fields, limit=None) -> dict[str, dict]:
        key = str(key)
        self.calls.append((user_id, cls, key))
        for rule_cls, fragments, result in reversed(self.rules):
            if rule_cls == cls and all(f in key for f in fragments):
                if isinstance(result, Exception):
                    raise result
                return dict(result)
        return {}

    def queries(self, cls: str) -> list[str]:
        return [key for _, c, key in self.calls if c == cls]

    def close(self) -> None:
        self.closed = True


def scalar_op(ticket_id, attcode, old, new, date, user_id="0", userinfo="", objclass="UserRequest") -> dict:
    return {
        "objkey": str(ticket_id),
        "objclass": objclass,
        "attcode": attcode,
        "oldvalue": old,
        "newvalue": new,
        "date": date,
        "userinfo": userinfo,
        "user_id": user_id,
    }


def case_log_op(ticket_id, attcode, date, user_id, userinfo="", objclass="UserRequest") -> dict:
    return {
        "objkey": str(ticket_id),
        "objclass": objclass,
        "attcode": attcode,
        "date": date,
        "userinfo": userinfo,
        "user_id": user_id,
    }


def objects_of(cls: str, *fields_list: dict) -> dict[str, dict]:
    """Key a list of field dicts the way iTop does: ``Class::id``."""
    return {f"{cls}::{fields.get('id', i)}": fields for i, fields in enumerate(fields_list, start=1)}


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config(db_session):
    return ConfigRepository(db_session)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def memory_cache():
    return InMemoryCacheService()


@pytest.fixture
def ttl_cache(memory_cache, clock):
    return TTLCache(memory_cache, clock=clock)


@pytest.fixture
def fake_client():
    return FakeItopClient()


@pytest.fixture
def make_user(db_session, config):
    """Create a host user with notifications on and an iTop identity bound."""

    def _make(user_id="alice", person_id="5", remote_user_id="9", enabled=True, portal_only=False):
        db_session.add(User(id=user_id, display_name=user_id.capitalize()))
        if enabled:
            config.set_notification_enabled(user_id, True)
        if person_id:
            config.set_person_id(user_id, person_id)
        if remote_user_id:
            config.set_remote_user_id(user_id, remote_user_id)
        if portal_only is not None:
            config.set_portal_only(user_id, portal_only, NOW)
        db_session.commit()
        return user_id

    return _make

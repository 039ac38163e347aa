from datetime import datetime, timedelta, timezone

import pytest

from rewards.config import Settings
from rewards.service import RewardLedger
from rewards.storage import InMemoryStorage, InMemoryUserDirectory


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class StubGateway:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.calls = []

    def transfer(self, user_id, amount, currency, method, reference=None):
        self.calls.append((user_id, amount, currency, method, reference))
        return self.succeed


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2024, 6, 1, 15, 30, tzinfo=timezone.utc))


@pytest.fixture()
def settings():
    return Settings(ENVIRONMENT="test")


@pytest.fixture()
def storage():
    return InMemoryStorage()


@pytest.fixture()
def directory():
    return InMemoryUserDirectory()


@pytest.fixture()
def gateway():
    return StubGateway()


@pytest.fixture()
def ledger(storage, directory, gateway, settings, clock):
    return RewardLedger(
        storage=storage,
        directory=directory,
        gateway=gateway,
        settings=settings,
        clock=clock,
    )

from typing import Callable

import pytest
from fakes import FakeUnitOfWork, InMemoryStore, RecordingNotifier
from spacebook.models import SpaceStatus, UserRole


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_space(1)
    store.add_space(2, status=SpaceStatus.MAINTENANCE)
    store.add_space(3)
    store.add_user(1)
    store.add_user(2)
    store.add_user(3, UserRole.SPACE_MANAGER)
    return store


@pytest.fixture
def uow(store: InMemoryStore) -> FakeUnitOfWork:
    return FakeUnitOfWork(store)


@pytest.fixture
def make_uow(store: InMemoryStore) -> Callable[[], FakeUnitOfWork]:
    return lambda: FakeUnitOfWork(store)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()

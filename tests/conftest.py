"""Shared test doubles and fixtures."""

import pytest

from rental_tax.clients.sheets import Row
from rental_tax.db import Database
from rental_tax.models import TokenGrant, UserInfo
from rental_tax.scheduler import TaskFn, TaskHandle
from rental_tax.session import AuthSession
from rental_tax.sync import SyncCoordinator


class ManualScheduler:
    """Scheduler double: tasks only run when the test fires them."""

    def __init__(self):
        self.tasks: dict[str, tuple[float, TaskFn]] = {}
        self.scheduled: list[str] = []

    def schedule(self, key: str, delay: float, fn: TaskFn) -> TaskHandle:
        self.tasks[key] = (delay, fn)
        self.scheduled.append(key)
        return TaskHandle(key)

    def cancel(self, key: str) -> bool:
        return self.tasks.pop(key, None) is not None

    def cancel_all(self) -> None:
        self.tasks.clear()

    def pending(self) -> set[str]:
        return set(self.tasks)

    async def fire(self, key: str) -> None:
        _, fn = self.tasks.pop(key)
        await fn()

    async def flush(self) -> None:
        while self.tasks:
            await self.fire(next(iter(self.tasks)))


class FakeStore:
    """In-memory remote tabular store keyed by sheet title."""

    def __init__(self, sheets: dict[str, list[Row]] | None = None):
        self.sheets: dict[str, list[Row]] = {
            name: [list(r) for r in rows] for name, rows in (sheets or {}).items()
        }
        self.headers: dict[str, list[str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.read_errors: dict[str, Exception] = {}
        self.write_error: Exception | None = None
        self.closed = False

    async def exists(self, name: str) -> bool:
        self.calls.append(("exists", name))
        return name in self.sheets

    async def create(self, name: str, columns: list[str]) -> None:
        self.calls.append(("create", name))
        self.headers[name] = list(columns)
        self.sheets[name] = []

    async def read_range(self, name: str) -> list[Row]:
        self.calls.append(("read", name))
        if name in self.read_errors:
            raise self.read_errors[name]
        return [list(r) for r in self.sheets.get(name, [])]

    async def clear_range(self, name: str) -> None:
        self.calls.append(("clear", name))
        if self.write_error is not None:
            raise self.write_error
        self.sheets[name] = []

    async def write_range(self, name: str, rows: list[Row]) -> None:
        self.calls.append(("write", name))
        if self.write_error is not None:
            raise self.write_error
        self.sheets[name] = [list(r) for r in rows]

    async def aclose(self) -> None:
        self.closed = True

    def writes(self) -> list[str]:
        return [name for call, name in self.calls if call == "write"]


class FakeIdentity:
    """Identity provider that signs in instantly."""

    def __init__(self, token="token-1", expires_in=3600, email="owner@example.com"):
        self.token = token
        self.expires_in = expires_in
        self.email = email
        self.error: Exception | None = None
        self.sign_ins = 0

    async def sign_in(self) -> TokenGrant:
        if self.error is not None:
            raise self.error
        self.sign_ins += 1
        return TokenGrant(token=self.token, expires_in=self.expires_in)

    async def get_user_info(self, token: str) -> UserInfo:
        return UserInfo(email=self.email)


class FakeClock:
    """Settable clock in epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def db():
    """Create an in-memory database."""
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(db, clock):
    return AuthSession(db, persist=True, clock=clock)


@pytest.fixture
def store():
    return FakeStore(
        {
            "settings": [["dependents", "0"], ["owner_split", "0.70"], ["admin_split", "0.30"]],
            "airbnb": [],
            "airbnb_expenses": [],
            "taxes": [],
        }
    )


@pytest.fixture
def empty_store():
    """Store for a spreadsheet without any of the app's sheets."""
    return FakeStore()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def coordinator(identity, store, session, scheduler):
    """Create a coordinator wired to in-memory doubles."""
    session.spreadsheet_id = "sheet-123"
    return SyncCoordinator(
        identity=identity,
        store_factory=lambda token, spreadsheet_id: store,
        session=session,
        scheduler=scheduler,
    )

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from marketplace.core.auth import Principal
from marketplace.core.exceptions import StoreUnavailable
from marketplace.db.memory import InMemoryRecordStore
from marketplace.db.store import USERS
from marketplace.models.market import MarketStatistics
from marketplace.models.user import User, UserRole, UserStatus
from marketplace.repositories.invoice_repo import InvoiceRepository
from marketplace.schemas.invoice import InvoiceCreate
from marketplace.services.deal_engine import DealEngine
from marketplace.services.market import MarketAggregator
from marketplace.services.marketplace_service import MarketplaceService
from marketplace.services.messaging import MessagingLog


class FakeClock:
    """Strictly increasing timestamps, one second apart."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def market():
    return MarketAggregator(MarketStatistics(
        total_volume=154_000_000,
        completed_deals=124,
        average_discount_rate=4.8,
        avg_funding_days=2.5,
        active_users=142,
        accident_rate=0.2
    ))


@pytest.fixture
def invoice_repo(store, clock):
    return InvoiceRepository(store, clock)


@pytest.fixture
def messaging(store, clock):
    return MessagingLog(store, clock)


@pytest.fixture
def engine(store, invoice_repo, messaging, market, clock):
    return DealEngine(store, invoice_repo, messaging, market, clock)


@pytest.fixture
def service(store, market, clock):
    return MarketplaceService(store, market, clock)


async def _add_user(store, user_id: str, role: UserRole, status: UserStatus = UserStatus.ACTIVE) -> User:
    user = User(
        id=user_id,
        name=f"{role.value} {user_id}",
        company_name=f"{user_id} K.K.",
        role=role,
        status=status
    )
    await store.insert(USERS, user.to_document())
    return user


@pytest_asyncio.fixture
async def seller(store):
    return await _add_user(store, "seller-1", UserRole.SELLER)


@pytest_asyncio.fixture
async def buyers(store):
    return [
        await _add_user(store, "buyer-a", UserRole.BUYER),
        await _add_user(store, "buyer-b", UserRole.BUYER),
        await _add_user(store, "buyer-c", UserRole.BUYER),
    ]


@pytest_asyncio.fixture
async def admin(store):
    return await _add_user(store, "admin-1", UserRole.ADMIN)


def _principal_for(user: User) -> Principal:
    return Principal(id=user.id, role=user.role)


def _invoice_payload(**overrides) -> InvoiceCreate:
    data = {
        "amount": 1_000_000,
        "due_date": date(2026, 3, 31),
        "industry": "Construction",
        "company_credit": "Stable, 20 years in business",
    }
    data.update(overrides)
    return InvoiceCreate(**data)


@pytest.fixture
def invoice_payload():
    return _invoice_payload


@pytest.fixture
def principal_for():
    return _principal_for


@pytest_asyncio.fixture
async def open_invoice(invoice_repo, seller):
    return await invoice_repo.create(seller.id, _invoice_payload())


@pytest.fixture
def mock_db():
    """Mock motor database: every collection attribute is a MagicMock with async methods."""
    mock_db = MagicMock()
    collections = {}

    def collection(name):
        if name not in collections:
            coll = MagicMock()
            coll.find_one = AsyncMock()
            coll.insert_one = AsyncMock()
            coll.update_one = AsyncMock()
            coll.count_documents = AsyncMock()
            collections[name] = coll
        return collections[name]

    mock_db.__getitem__.side_effect = collection
    return mock_db


@pytest.fixture
def add_user(store):
    async def add(user_id: str, role: UserRole, status: UserStatus = UserStatus.ACTIVE) -> User:
        return await _add_user(store, user_id, role, status)
    return add


@pytest.fixture
def fail_update_once(store, monkeypatch):
    """Make the next store update matching ``when(table, fields)`` raise StoreUnavailable."""

    def arm(when):
        original_update = store.update
        state = {"failed": False}

        async def flaky_update(table, record_id, fields, expected=None):
            if not state["failed"] and when(table, fields):
                state["failed"] = True
                raise StoreUnavailable("simulated outage")
            return await original_update(table, record_id, fields, expected)

        monkeypatch.setattr(store, "update", flaky_update)
        return state

    return arm

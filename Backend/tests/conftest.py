"""
Pytest configuration and fixtures.

Booking logic is exercised against the in-memory transactional store; the
FastAPI client gets it through ``dependency_overrides`` so no database is
needed. The PostgreSQL suite has its own fixtures and only runs when
TEST_DATABASE_URL is set.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from httpx import ASGITransport, AsyncClient

from app.notifications import InMemoryReminderLedger, ReminderDispatcher
from tests.factories import seeded_store


@pytest.fixture
def store():
    """In-memory store with two providers and a few services."""
    return seeded_store()


@pytest.fixture
def sent_sms():
    """Every (phone, body) the fake SMS sender accepted."""
    return []


@pytest.fixture
def ledger():
    return InMemoryReminderLedger()


@pytest.fixture
def dispatcher(ledger, sent_sms):
    async def fake_send(phone: str, body: str) -> bool:
        sent_sms.append((phone, body))
        return True

    return ReminderDispatcher(ledger, send=fake_send, tz_name="UTC")


@pytest.fixture
async def client(store, dispatcher):
    """
    FastAPI AsyncClient wired to the in-memory store and fake SMS sender.
    """
    from app.main import app, get_booking_store, get_reminder_dispatcher

    app.dependency_overrides[get_booking_store] = lambda: store
    app.dependency_overrides[get_reminder_dispatcher] = lambda: dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()

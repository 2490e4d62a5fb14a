import os
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "ticketdesk-test-secret-0123456789abcdef")
os.environ.setdefault("DRY_RUN", "1")

from datetime import datetime

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketdesk import settings
from ticketdesk.main import app
from ticketdesk.providers.base import SendResult
from ticketdesk.services.notifier import ConnectionManager
from ticketdesk.storage.db import Base, get_db
from ticketdesk.storage.models import Customer, Contact, ProviderInstance, SlaPolicy, TicketPriority


class FakeDispatcher:
    """Records dispatch calls instead of talking to a provider."""

    def __init__(self, result=True, provider_id=None):
        self.result = result
        self.provider_id = provider_id
        self.dry_run = True
        self.calls = []
        self.states = {}

    async def dispatch(self, db, contact_address, content, type="text", media_url=None, instance_key=None):
        self.calls.append({
            "to": contact_address, "content": content, "type": getattr(type, "value", type),
            "media_url": media_url, "instance_key": instance_key,
        })
        return SendResult(ok=self.result, provider_id=self.provider_id if self.result else None)

    async def connection_state(self, db, instance_key):
        return self.states.get(instance_key)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def client(session_factory, dispatcher):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    saved = (app.state.dispatcher, app.state.notifier)
    app.state.dispatcher = dispatcher
    app.state.notifier = ConnectionManager(send_timeout=2)
    with TestClient(app) as c:
        yield c
    app.state.dispatcher, app.state.notifier = saved
    app.dependency_overrides.clear()


def make_token(user_id="agent-1", role="agent", secret=None):
    return jwt.encode({"userId": user_id, "role": role}, secret or settings.JWT_SECRET,
                      algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


def make_customer(db, number="5511999990000", name="Maria Silva"):
    customer = Customer(name=name, email=f"{number}@example.com")
    db.add(customer)
    db.flush()
    contact = Contact(customer_id=customer.id, whatsapp_number=number, name=name)
    db.add(contact)
    db.commit()
    return customer, contact


def make_instance(db, key="main", active=True, api_url="https://evo.example.com", token="evo-key"):
    inst = ProviderInstance(name=key, instance_key=key, api_url=api_url, token=token, is_active=active,
                            created_at=datetime.now())
    db.add(inst)
    db.commit()
    return inst


def make_policy(db, priority=TicketPriority.normal, first_response=30, resolution=240):
    policy = SlaPolicy(name=f"{priority.value} default", priority=priority,
                       first_response_target=first_response, resolution_target=resolution)
    db.add(policy)
    db.commit()
    return policy


def upsert_payload(address="5511988887777", text="Meu boleto não chegou", msg_id="ABC123",
                   push_name="Joana", from_me=False, message=None):
    return {
        "event": "message.upsert",
        "instance": "main",
        "data": {
            "key": {"remoteJid": f"{address}@s.whatsapp.net", "id": msg_id, "fromMe": from_me},
            "pushName": push_name,
            "message": message if message is not None else {"conversation": text},
        },
    }


def wait_joined(user_id, ticket_id, timeout=2.0):
    """Block until the server has processed a join_ticket frame for this user."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if any(c.user_id == user_id and c.ticket_id == ticket_id for c in app.state.notifier._connections):
            return
        time.sleep(0.01)
    raise AssertionError(f"{user_id} never joined {ticket_id}")

# tests/conftest.py

import os

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["GROQ_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["TWILIO_PHONE_NUMBER"] = ""

from datetime import date
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import get_db
from app.llm import LLMClient, get_llm_client
from app.models import AccountRole, Base, Family, FamilyMember, User
from app.notifications import OutboxDispatcher, get_outbox_dispatcher
from app.permissions import AuthContext, FamilyRole
from app.sms import get_sms_client
from auth.jwt_handler import create_access_token

from .fakes import FakeChatModel, FakeSMSClient

TODAY = date(2025, 3, 12)  # a Wednesday


@pytest.fixture()
def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _add_member(db, family, name, account_role, family_role, phone=None):
    user = User(
        email=f"{name.lower()}@example.com",
        name=name,
        password_hash="not-a-real-hash",
        role=account_role,
        phone_number=phone,
        sms_notifications_enabled=phone is not None,
    )
    db.add(user)
    db.flush()
    db.add(FamilyMember(user_id=user.id, family_id=family.id, role=family_role))
    return user


@pytest.fixture()
def family(db):
    """
    A family with an admin parent, a second parent and two children.
    Erik has SMS enabled; everyone else does not.
    """
    fam = Family(name="Nordqvist", family_code="ABCD1234")
    db.add(fam)
    db.flush()

    mom = _add_member(db, fam, "Mom", AccountRole.PARENT, FamilyRole.ADMIN_PARENT)
    dad = _add_member(db, fam, "Dad", AccountRole.PARENT, FamilyRole.PARENT)
    erik = _add_member(db, fam, "Erik", AccountRole.CHILD, FamilyRole.CHILD, phone="+15550001111")
    sasha = _add_member(db, fam, "Sasha", AccountRole.CHILD, FamilyRole.CHILD)
    db.commit()

    def ctx(user, role):
        return AuthContext(user_id=user.id, family_id=fam.id, role=role, name=user.name)

    return SimpleNamespace(
        family=fam,
        mom=mom,
        dad=dad,
        erik=erik,
        sasha=sasha,
        mom_ctx=ctx(mom, FamilyRole.ADMIN_PARENT),
        dad_ctx=ctx(dad, FamilyRole.PARENT),
        erik_ctx=ctx(erik, FamilyRole.CHILD),
        sasha_ctx=ctx(sasha, FamilyRole.CHILD),
    )


@pytest.fixture()
def fake_sms() -> FakeSMSClient:
    return FakeSMSClient()


@pytest.fixture()
def dispatcher(session_factory, fake_sms) -> OutboxDispatcher:
    return OutboxDispatcher(session_factory=session_factory, sms_client=fake_sms, max_attempts=3, batch_size=50)


@pytest.fixture()
def chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture()
def client(session_factory, dispatcher, fake_sms, chat_model):
    """
    TestClient with the database, outbox, SMS and LLM dependencies swapped
    for test doubles. Not used as a context manager, so the lifespan (and
    its scheduler) never runs.
    """
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_outbox_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_sms_client] = lambda: fake_sms
    app.dependency_overrides[get_llm_client] = lambda: LLMClient(chat_model=chat_model)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
    return _headers

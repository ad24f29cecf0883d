import os

# Must be set before the application modules are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("PAYMENT_GATEWAY_WEBHOOK_SECRET", None)
os.environ.pop("REDIS_URL", None)

from datetime import datetime

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from carebridge.auth import get_current_user
from carebridge.database import Base, get_db
from carebridge.domain.scheduling.slot_store import SlotStore
from carebridge.main import app
from carebridge.models import Doctor, Patient, PatientAssistance, User
from carebridge.services.attachment_storage import (
    AttachmentStorage,
    StorageError,
    StoredFile,
    get_attachment_storage,
)
from carebridge.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from carebridge.shared.timeutils import get_clock

NOW = datetime(2025, 5, 20, 8, 0)


def fixed_clock():
    return NOW


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.sent = []
        self.broadcasts = []
        self.fail = False

    def dispatch(self, target_user_id, event_type, payload):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append((target_user_id, event_type, payload))

    def broadcast(self, event_type, payload):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.broadcasts.append((event_type, payload))

    def events(self, event_type):
        return [s for s in self.sent if s[1] == event_type]


class FakeStorage(AttachmentStorage):
    def __init__(self):
        self.objects = {}
        # Number of successful uploads before store() starts failing
        self.fail_after = None

    def store(self, key, content, content_type, filename):
        if self.fail_after is not None and len(self.objects) >= self.fail_after:
            raise StorageError(f"Failed to store {filename}")
        self.objects[key] = content
        return StoredFile(filename=filename, path=key, size=len(content))

    def delete(self, key):
        self.objects.pop(key, None)

    def url(self, key):
        return f"https://files.test/{key}"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def other_db(session_factory):
    """A second session, standing in for a concurrent request"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return FakeStorage()


class AuthState:
    user_id = None

    def login(self, user):
        self.user_id = user.id


@pytest.fixture
def auth():
    return AuthState()


@pytest.fixture
def client(session_factory, notifier, storage, auth):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_current_user(session: Session = Depends(get_db)):
        return session.get(User, auth.user_id)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    app.dependency_overrides[get_attachment_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

_counter = {"n": 0}


def _next():
    _counter["n"] += 1
    return _counter["n"]


def make_user(db, role="patient"):
    n = _next()
    user = User(firebase_uid=f"uid-{n}", email=f"user{n}@example.com", full_name=f"User {n}", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_patient(db):
    user = make_user(db, "patient")
    patient = Patient(user_id=user.id)
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def make_doctor(db):
    n = _next()
    user = make_user(db, "doctor")
    doctor = Doctor(user_id=user.id, specialty="General practice", license=f"LIC-{n}")
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def make_admin(db, role="admin"):
    return make_user(db, role)


def declare(db, doctor, slots, is_active=True):
    """Replace a doctor's declared slots with {date: [times]}"""
    entries = [{"date": d, "times": times, "isActive": is_active} for d, times in slots.items()]
    SlotStore(db).declare(doctor.id, entries, {})
    db.commit()


def make_assistance(db, patient, requested=10_000_000, status="approved"):
    assistance = PatientAssistance(
        patient_id=patient.id,
        request_type="surgery",
        title="Heart surgery",
        description="Surgery costs",
        medical_condition="Congenital heart defect",
        requested_amount=requested,
        urgency="high",
        support_start_date=datetime(2025, 6, 1),
        support_end_date=datetime(2025, 12, 31),
        contact_phone="0901234567",
        raised_amount=0,
        withdrawn_amount=0,
        status=status,
    )
    db.add(assistance)
    db.commit()
    db.refresh(assistance)
    return assistance


def reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)

import asyncio

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from carebridge import auth
from carebridge.models import User


def token(uid="firebase-doc-1", **claims):
    return dict({"sub": uid, "email": f"{uid}@example.com", "name": "Dr. Hoa"}, **claims)


def login(db, monkeypatch, claims):
    async def fake_verify(raw_token):
        return claims

    monkeypatch.setattr(auth, "verify_firebase_token", fake_verify)
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="id-token")
    return asyncio.run(auth.get_current_user(credentials, db))


def test_role_claim_is_used_on_first_login(db, monkeypatch):
    user = login(db, monkeypatch, token(role="doctor"))

    assert user.role == "doctor"
    assert db.query(User).filter(User.firebase_uid == "firebase-doc-1").one().role == "doctor"


def test_missing_claim_defaults_to_patient_and_keeps_stored_role(db, monkeypatch):
    assert login(db, monkeypatch, token(uid="firebase-new")).role == "patient"

    login(db, monkeypatch, token(uid="firebase-admin", role="charity_admin"))
    assert login(db, monkeypatch, token(uid="firebase-admin")).role == "charity_admin"


def test_role_claim_change_updates_existing_user(db, monkeypatch):
    first = login(db, monkeypatch, token(role="patient"))

    promoted = login(db, monkeypatch, token(role="admin"))

    assert promoted.id == first.id
    assert promoted.role == "admin"


def test_unknown_role_claim_is_ignored(db, monkeypatch):
    assert login(db, monkeypatch, token(role="superuser")).role == "patient"


def test_token_without_subject_is_rejected(db, monkeypatch):
    with pytest.raises(HTTPException) as exc:
        login(db, monkeypatch, {"email": "nobody@example.com"})
    assert exc.value.status_code == 401


def test_disabled_account_is_refused(db, monkeypatch):
    user = login(db, monkeypatch, token(role="doctor"))
    user.is_active = False
    db.commit()

    with pytest.raises(HTTPException) as exc:
        login(db, monkeypatch, token(role="doctor"))
    assert exc.value.status_code == 403

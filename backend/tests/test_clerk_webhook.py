"""
Tests for the Clerk user-sync webhook.
"""

import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from mcqlab.models.models import MCQ, Quiz, Resource, User
from mcqlab.routers.clerk_webhook import verify_clerk_webhook

WEBHOOK_URL = "/api/webhook/clerk"
RAW_SECRET = b"clerk-test-secret"
SECRET = "whsec_" + base64.b64encode(RAW_SECRET).decode()


def svix_headers(body: bytes, msg_id: str = "msg_1", timestamp: str = "1700000000") -> dict:
    signed = f"{msg_id}.{timestamp}.{body.decode()}".encode()
    signature = base64.b64encode(hmac.new(RAW_SECRET, signed, hashlib.sha256).digest()).decode()
    return {
        "svix-id": msg_id,
        "svix-timestamp": timestamp,
        "svix-signature": f"v1,{signature}",
    }


def user_event(event_type: str, user_id: str = "user_789", email: str = "new@mcqlab.dev") -> dict:
    return {
        "type": event_type,
        "data": {
            "id": user_id,
            "first_name": "New",
            "last_name": "User",
            "primary_email_address_id": "idn_2",
            "email_addresses": [
                {"id": "idn_1", "email_address": "secondary@mcqlab.dev"},
                {"id": "idn_2", "email_address": email},
            ],
        },
    }


class TestClerkSignature:

    @pytest.mark.unit
    def test_valid_signature(self):
        body = b'{"type": "user.created"}'
        headers = svix_headers(body)
        assert verify_clerk_webhook(
            body, headers["svix-id"], headers["svix-timestamp"], headers["svix-signature"], SECRET
        )

    @pytest.mark.unit
    def test_tampered_body_rejected(self):
        headers = svix_headers(b'{"type": "user.created"}')
        assert not verify_clerk_webhook(
            b'{"type": "user.deleted"}', headers["svix-id"], headers["svix-timestamp"], headers["svix-signature"], SECRET
        )

    @pytest.mark.unit
    def test_bad_signature_is_401(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("CLERK_WEBHOOK_SECRET", SECRET)
        body = json.dumps(user_event("user.created")).encode()
        headers = svix_headers(b"something else")
        response = client.post(WEBHOOK_URL, content=body, headers=headers)
        assert response.status_code == 401

    @pytest.mark.unit
    def test_missing_secret_in_production_is_500(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        response = client.post(WEBHOOK_URL, json=user_event("user.created"))
        assert response.status_code == 500


class TestClerkEvents:

    @pytest.mark.unit
    def test_user_created_with_primary_email(self, client: TestClient, db: Session, monkeypatch):
        monkeypatch.setenv("CLERK_WEBHOOK_SECRET", SECRET)
        body = json.dumps(user_event("user.created")).encode()

        response = client.post(WEBHOOK_URL, content=body, headers=svix_headers(body))

        assert response.status_code == 200
        assert response.json() == {"status": "created", "user_id": "user_789"}
        user = db.query(User).filter(User.id == "user_789").one()
        assert user.email == "new@mcqlab.dev"
        assert user.full_name == "New User"

    @pytest.mark.unit
    def test_user_updated(self, client: TestClient, db: Session, test_user: User):
        event = user_event("user.updated", user_id=test_user.id, email="changed@mcqlab.dev")
        response = client.post(WEBHOOK_URL, json=event)

        assert response.json()["status"] == "updated"
        db.expire_all()
        assert db.query(User).filter(User.id == test_user.id).one().email == "changed@mcqlab.dev"

    @pytest.mark.unit
    def test_user_deleted_removes_learning_data(self, client: TestClient, db: Session, test_quiz: Quiz):
        response = client.post(WEBHOOK_URL, json={"type": "user.deleted", "data": {"id": "user_123"}})

        assert response.json() == {"status": "deleted", "user_id": "user_123"}
        assert db.query(User).count() == 0
        assert db.query(Resource).count() == 0
        assert db.query(MCQ).count() == 0

    @pytest.mark.unit
    def test_other_events_ignored(self, client: TestClient):
        response = client.post(WEBHOOK_URL, json={"type": "session.created", "data": {}})
        assert response.json() == {"status": "ignored", "event_type": "session.created"}

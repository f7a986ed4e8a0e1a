"""JWT service + middleware tests."""
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest
from flask import g

from it_portal.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token


def test_access_token_payload(app):
    token = generate_access_token("E001", roles=["approver"])
    payload = decode_access_token(token)
    assert payload["sub"] == "E001"
    assert payload["roles"] == ["approver"]
    assert payload["type"] == "access"


def test_non_access_token_rejected(app):
    token = pyjwt.encode(
        {"sub": "E001", "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        app.config["JWT_SECRET_KEY"],
        algorithm=ALGORITHM,
    )
    with pytest.raises(pyjwt.InvalidTokenError):
        decode_access_token(token)


def test_expired_token_leaves_user_unset(app):
    token = pyjwt.encode(
        {"sub": "E001", "type": "access", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        app.config["JWT_SECRET_KEY"],
        algorithm=ALGORITHM,
    )
    with app.test_request_context(
        "/api/v1/applications/pending", headers={"Authorization": f"Bearer {token}"}
    ):
        app.preprocess_request()
        assert g.jwt_user_id is None


def test_valid_token_sets_user(app):
    token = generate_access_token("E042")
    with app.test_request_context(
        "/api/v1/applications/pending", headers={"Authorization": f"Bearer {token}"}
    ):
        app.preprocess_request()
        assert g.jwt_user_id == "E042"

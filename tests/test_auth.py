"""Tests for bearer tokens, role checks and user administration."""

import pytest

from product_requirements.auth import decode_token, issue_token
from product_requirements.errors import AuthenticationError, ConflictError
from product_requirements.schemas.enums import Role
from product_requirements.schemas.users import UserCreate, UserUpdate
from product_requirements.services.users import UserService


class TestTokens:
    def test_round_trip_claims(self):
        claims = decode_token(issue_token("user-1", Role.COMMENTER))
        assert claims["sub"] == "user-1"
        assert claims["role"] == "Commenter"

    def test_expired_token(self):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(issue_token("user-1", Role.USER, expires_minutes=-1))
        assert exc_info.value.code == "TOKEN_EXPIRED"

    @pytest.mark.parametrize("mangle", [lambda t: t + "x", lambda t: "x" + t, lambda t: "no-dot"])
    def test_tampered_or_malformed_token(self, mangle):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(mangle(issue_token("user-1", Role.USER)))
        assert exc_info.value.code == "INVALID_TOKEN"


class TestHttpAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/v1/epics")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    def test_expired_token(self, client, users):
        token = issue_token(users["user"].id, Role.USER, expires_minutes=-5)
        response = client.get("/api/v1/epics", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_unknown_subject(self, client):
        token = issue_token("ghost", Role.ADMINISTRATOR)
        response = client.get("/api/v1/epics", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_role_is_read_from_user_record(self, client, users):
        # Claims say Administrator, the user record says User
        token = issue_token(users["user"].id, Role.ADMINISTRATOR)
        response = client.get("/api/v1/users", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403

    def test_commenter_cannot_create_entities(self, client, auth_headers):
        response = client.post(
            "/api/v1/epics", json={"title": "Nope", "priority": 3}, headers=auth_headers("commenter")
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    def test_commenter_can_read_and_comment(self, client, make, auth_headers):
        make.epic()
        headers = auth_headers("commenter")

        assert client.get("/api/v1/epics/EP-001", headers=headers).status_code == 200
        response = client.post(
            "/api/v1/epics/EP-001/comments", json={"content": "Question"}, headers=headers
        )
        assert response.status_code == 201
        assert response.json()["comment"]["content"] == "Question"

    def test_login_and_whoami(self, client, users):
        response = client.post("/api/v1/auth/token", json={"username": "carol"})
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"

        me = client.get(
            "/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"}
        )
        assert me.json()["username"] == "carol"
        assert me.json()["role"] == "Commenter"

    def test_login_unknown_user(self, client):
        response = client.post("/api/v1/auth/token", json={"username": "mallory"})
        assert response.status_code == 401


class TestUserService:
    def test_duplicate_username_and_email(self, db_session, users):
        service = UserService(db_session)
        with pytest.raises(ConflictError):
            service.create(UserCreate(username="bob", email="other@example.com"))
        with pytest.raises(ConflictError):
            service.create(UserCreate(username="robert", email="bob@example.com"))

    def test_role_change(self, db_session, users):
        updated = UserService(db_session).update(
            users["commenter"].id, UserUpdate(role=Role.USER), actor_id=users["admin"].id
        )
        assert updated.role == "User"

    def test_admin_cannot_delete_self(self, db_session, principals, users):
        with pytest.raises(ConflictError):
            UserService(db_session).delete(users["admin"].id, principals["admin"])

    def test_user_with_authored_content_cannot_be_deleted(self, db_session, make, principals, users):
        make.epic()
        with pytest.raises(ConflictError):
            UserService(db_session).delete(users["user"].id, principals["admin"])

    def test_unreferenced_user_can_be_deleted(self, db_session, principals, users):
        service = UserService(db_session)
        service.delete(users["commenter"].id, principals["admin"])
        assert service.get_by_username("carol") is None

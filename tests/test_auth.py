import pytest

from unilib.errors import AuthenticationError, AuthorizationError, DomainRuleError
from unilib.models.models import User, UserRole, UserStatus
from unilib.schemas.schemas import UserCreate
from unilib.security.auth import create_access_token, decode_access_token, require_admin_role
from unilib.services import users

from conftest import PASSWORD


def test_guard_without_session_is_unauthenticated(db):
    with pytest.raises(AuthenticationError):
        require_admin_role(None, db)


def test_guard_trusts_admin_claim(db, admin):
    session = decode_access_token(create_access_token(admin))

    assert require_admin_role(session, db) is session


def test_guard_rechecks_stale_role_claim(db, user):
    session = decode_access_token(create_access_token(user))
    assert session.role == UserRole.USER.value

    users.set_user_role(db, user.id, UserRole.ADMIN)

    assert require_admin_role(session, db) is session


def test_guard_refuses_plain_user(db, user):
    session = decode_access_token(create_access_token(user))

    with pytest.raises(AuthorizationError):
        require_admin_role(session, db)


def test_tampered_token_is_ignored(user):
    token = create_access_token(user)

    assert decode_access_token(token[:-2] + "xx") is None
    assert decode_access_token("not-a-token") is None


def test_sign_up_creates_pending_account(client, db):
    response = client.post(
        "/auth/sign-up",
        json={
            "fullName": "Ada Lovelace",
            "email": "Ada@Uni.edu",
            "universityId": 4242,
            "password": PASSWORD,
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "ada@uni.edu"
    assert body["user"]["status"] == "PENDING"
    assert "passwordHash" not in body["user"]
    stored = db.query(User).filter(User.email == "ada@uni.edu").one()
    assert stored.password_hash != PASSWORD


def test_sign_up_duplicate_email(client, user):
    response = client.post(
        "/auth/sign-up",
        json={
            "fullName": "Someone Else",
            "email": user.email,
            "universityId": 9999,
            "password": PASSWORD,
        },
    )

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"] == "User already exists"


def test_sign_up_rejects_bad_input(client):
    response = client.post(
        "/auth/sign-up",
        json={"fullName": "Ada", "email": "not-an-email", "universityId": 1, "password": PASSWORD},
    )
    assert response.status_code == 400

    response = client.post(
        "/auth/sign-up",
        json={"fullName": "Ada", "email": "ada@uni.edu", "universityId": 1, "password": "short"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input"


def test_sign_in_and_profile(client, user):
    response = client.post("/auth/sign-in", data={"username": user.email, "password": PASSWORD})

    assert response.status_code == 200
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"

    profile = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    assert profile.json()["user"]["id"] == user.id


def test_sign_in_wrong_password(client, user):
    response = client.post("/auth/sign-in", data={"username": user.email, "password": "wrong-password"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_user_routes_require_session(client):
    response = client.get("/books")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_admin_routes_status_codes(client, make_user, admin, headers_for):
    member = make_user()
    pending = make_user(status=UserStatus.PENDING)

    assert client.get("/admin/stats").status_code == 401
    assert client.get("/admin/stats", headers=headers_for(member)).status_code == 403
    assert client.get("/admin/stats", headers=headers_for(pending)).status_code == 403
    assert client.get("/admin/stats", headers=headers_for(admin)).status_code == 200


def test_promoted_user_keeps_old_token(client, db, make_user, admin, headers_for):
    member = make_user()
    headers = headers_for(member)

    response = client.patch(
        f"/admin/users/{member.id}/role", json={"role": "ADMIN"}, headers=headers_for(admin)
    )
    assert response.status_code == 200

    assert client.get("/admin/stats", headers=headers).status_code == 200


def test_sign_up_racing_a_duplicate_is_refused(db, make_user, monkeypatch):
    hash_for_new_user = users.hash_password

    def register_same_email_meanwhile(password):
        make_user(email="ada@uni.edu", university_id=7777)
        return hash_for_new_user(password)

    monkeypatch.setattr(users, "hash_password", register_same_email_meanwhile)

    with pytest.raises(DomainRuleError) as refused:
        users.register_user(
            db,
            UserCreate(
                full_name="Ada Lovelace", email="ada@uni.edu", university_id=4242, password=PASSWORD
            ),
        )

    assert refused.value.error == "User already exists"
    assert db.query(User).filter(User.email == "ada@uni.edu").count() == 1

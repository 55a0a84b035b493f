import hashlib
import time

import pytest
from jose import jwt

from conftest import PASSWORD, make_admin, make_user, sign_in
from sessions import (
    DOMAINS, cookie_candidates, decode_token, hash_password, issue_token,
    resolve_principal, verify_password,
)

TUTORIALS = DOMAINS["tutorials"]
JOBS = DOMAINS["jobs"]


def test_password_hashing():
    stored = hash_password(PASSWORD)
    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password(PASSWORD, stored)
    assert not verify_password("wrong", stored)
    assert not verify_password(PASSWORD, None)


def test_legacy_sha256_password():
    assert verify_password(PASSWORD, hashlib.sha256(PASSWORD.encode()).hexdigest())


def test_cookie_candidates_order(monkeypatch):
    monkeypatch.delenv("TUTORIALS_SESSION_COOKIE_NAME", raising=False)
    assert cookie_candidates(TUTORIALS) == [
        "__Secure-tutorials-auth-token", "tutorials-auth-token", "auth-token",
    ]
    monkeypatch.setenv("TUTORIALS_SESSION_COOKIE_NAME", "custom")
    assert cookie_candidates(TUTORIALS)[0] == "custom"


def test_first_valid_candidate_wins():
    good = issue_token(TUTORIALS, "a" * 24)
    cookies = {"__Secure-tutorials-auth-token": "garbage", "auth-token": good}
    principal = resolve_principal(TUTORIALS, cookies)
    assert principal is not None
    assert principal.id == "a" * 24


def test_token_from_another_domain_is_rejected():
    token = issue_token(JOBS, "a" * 24)
    assert resolve_principal(TUTORIALS, {"auth-token": token}) is None


def test_token_with_same_secret_but_wrong_audience_is_rejected():
    token = jwt.encode({"sub": "x", "aud": "jobs"}, TUTORIALS.secret, algorithm="HS256")
    assert resolve_principal(TUTORIALS, {"tutorials-auth-token": token}) is None


def test_token_without_audience_is_rejected():
    token = jwt.encode({"sub": "x"}, TUTORIALS.secret, algorithm="HS256")
    assert resolve_principal(TUTORIALS, {"tutorials-auth-token": token}) is None


def test_expired_token_is_rejected():
    token = issue_token(TUTORIALS, "a" * 24, lifetime=-10)
    assert resolve_principal(TUTORIALS, {"tutorials-auth-token": token}) is None


@pytest.mark.parametrize("subject", ["", "   "])
def test_token_without_subject_is_rejected(subject):
    now = int(time.time())
    token = jwt.encode({"sub": subject, "aud": "tutorials", "exp": now + 60}, TUTORIALS.secret, algorithm="HS256")
    assert resolve_principal(TUTORIALS, {"tutorials-auth-token": token}) is None


def test_decode_token_returns_claims():
    claims = decode_token(TUTORIALS, issue_token(TUTORIALS, "abc", {"role": "teacher"}))
    assert claims["sub"] == "abc"
    assert claims["role"] == "teacher"


def test_me_requires_session(tutorials_client):
    resp = tutorials_client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Not authenticated"}


def test_me_with_session(db, tutorials_client):
    user = make_user(db, role="teacher")
    sign_in(tutorials_client, "tutorials", user)
    resp = tutorials_client.get("/api/auth/me")
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "user@example.com"


def test_jobs_cookie_does_not_authenticate_on_tutorials(db, tutorials_client):
    user = make_user(db, role="teacher")
    tutorials_client.cookies.set("tutorials-auth-token", issue_token(JOBS, str(user["_id"])))
    assert tutorials_client.get("/api/auth/me").status_code == 401


def test_inactive_user_is_forbidden(db, tutorials_client):
    user = make_user(db, role="teacher", isActive=False)
    sign_in(tutorials_client, "tutorials", user)
    resp = tutorials_client.get("/api/auth/me")
    assert resp.status_code == 403
    assert resp.json()["error"] == "Account is deactivated"


def test_login_sets_cookie(db, jobs_client):
    make_user(db, role="freelancer")
    resp = jobs_client.post("/api/auth/login", json={"email": "USER@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    assert "jobs-auth-token" in resp.cookies
    assert db.user.find_one({"email": "user@example.com"})["lastLogin"] is not None


def test_login_with_bad_password(db, jobs_client):
    make_user(db)
    resp = jobs_client.post("/api/auth/login", json={"email": "user@example.com", "password": "nope"})
    assert resp.status_code == 401


def test_admin_verify(db, admin_client):
    admin = make_admin(db)
    sign_in(admin_client, "admin", admin)
    body = admin_client.get("/api/auth/admin/verify").json()
    assert body["success"] is True
    assert body["admin"]["email"] == "admin@aotf.in"
    assert body["admin"]["permissions"]["settings"] is True


def test_admin_verify_without_session(admin_client):
    resp = admin_client.get("/api/auth/admin/verify")
    assert resp.status_code == 401


def test_admin_verify_deleted_admin(db, admin_client):
    admin = make_admin(db)
    sign_in(admin_client, "admin", admin)
    db.admin.delete_one({"_id": admin["_id"]})
    assert admin_client.get("/api/auth/admin/verify").status_code == 404


def test_admin_verify_inactive_admin(db, admin_client):
    admin = make_admin(db, isActive=False)
    sign_in(admin_client, "admin", admin)
    assert admin_client.get("/api/auth/admin/verify").status_code == 403


def test_user_token_does_not_open_admin(db, admin_client):
    user = make_user(db)
    admin_client.cookies.set("adminToken", issue_token(TUTORIALS, str(user["_id"])))
    assert admin_client.get("/api/auth/admin/verify").status_code == 401


# ----------------- Password change -----------------
CHANGE = {"currentPassword": PASSWORD, "newPassword": "fresh-pass", "confirmPassword": "fresh-pass"}


def _cleared(resp, name):
    return any(h.startswith(f"{name}=") and "Max-Age=0" in h for h in resp.headers.get_list("set-cookie"))


@pytest.mark.parametrize("client_name, domain_name", [("tutorials_client", "tutorials"), ("jobs_client", "jobs")])
def test_change_password_then_log_in_again(request, db, client_name, domain_name):
    client = request.getfixturevalue(client_name)
    user = make_user(db, role="teacher" if domain_name == "tutorials" else "freelancer")
    sign_in(client, domain_name, user)

    resp = client.post("/api/auth/change-password", json=CHANGE)
    assert resp.json() == {"success": True, "message": "Password changed successfully"}
    assert _cleared(resp, f"{domain_name}-auth-token")
    stored = db.user.find_one({"_id": user["_id"]})
    assert verify_password("fresh-pass", stored["password"])
    assert not verify_password(PASSWORD, stored["password"])

    client.cookies.clear()
    login = {"email": "user@example.com", "password": PASSWORD}
    assert client.post("/api/auth/login", json=login).status_code == 401
    assert client.post("/api/auth/login", json=dict(login, password="fresh-pass")).status_code == 200


@pytest.mark.parametrize("body, status, error", [
    ({"newPassword": "fresh-pass", "confirmPassword": "fresh-pass"}, 400, "All fields are required"),
    (dict(CHANGE, newPassword="abc", confirmPassword="abc"), 400, "New password must be at least 6 characters long"),
    (dict(CHANGE, confirmPassword="fresh-pasz"), 400, "New passwords do not match"),
    (dict(CHANGE, newPassword=PASSWORD, confirmPassword=PASSWORD), 400,
     "New password must be different from current password"),
    (dict(CHANGE, currentPassword="wrong-one"), 401, "Current password is incorrect"),
])
def test_change_password_rejections(db, tutorials_client, body, status, error):
    user = make_user(db, role="teacher")
    sign_in(tutorials_client, "tutorials", user)
    resp = tutorials_client.post("/api/auth/change-password", json=body)
    assert resp.status_code == status
    assert resp.json() == {"success": False, "error": error}
    assert db.user.find_one({"_id": user["_id"]})["password"] == user["password"]


def test_change_password_requires_session(tutorials_client):
    assert tutorials_client.post("/api/auth/change-password", json=CHANGE).status_code == 401

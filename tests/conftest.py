import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document, get_db
from permissions import role_permissions
from schemas import Admin, Guardian, Post, Teacher, User
from sessions import DOMAINS, hash_password, issue_token, primary_cookie_name

PASSWORD = "secret123"


@pytest.fixture
def db():
    return mongomock.MongoClient()["aotf_test"]


@pytest.fixture(autouse=True)
def override_db(db):
    apps = (main.main_app, main.tutorials_app, main.jobs_app, main.admin_app)
    for app in apps:
        app.dependency_overrides[get_db] = lambda: db
    yield
    for app in apps:
        app.dependency_overrides.clear()


def _client(app):
    return TestClient(app)


@pytest.fixture
def main_client():
    return _client(main.main_app)


@pytest.fixture
def tutorials_client():
    return _client(main.tutorials_app)


@pytest.fixture
def jobs_client():
    return _client(main.jobs_app)


@pytest.fixture
def admin_client():
    return _client(main.admin_app)


# ----------------- Factories -----------------
def make_user(db, email="user@example.com", role=None, **extra):
    user = User(email=email, password=hash_password(PASSWORD), name=extra.pop("name", "Test User"), role=role)
    data = user.model_dump()
    data.update(extra)
    create_document("user", data, database=db)
    return db.user.find_one({"email": email})


def make_teacher(db, user, teacher_id="AOT-ABCD1234"):
    teacher = Teacher(
        teacherId=teacher_id,
        userId=str(user["_id"]),
        name=user.get("name") or "Teacher",
        email=user["email"],
        phone="9999999999",
        location="Kolkata",
    )
    create_document("teacher", teacher, database=db)
    return db.teacher.find_one({"teacherId": teacher_id})


def make_guardian(db, user, guardian_id="AOG-ABCDE"):
    guardian = Guardian(
        guardianId=guardian_id,
        userId=str(user["_id"]),
        name=user.get("name") or "Guardian",
        email=user["email"],
        phone="8888888888",
        location="Howrah",
    )
    create_document("guardian", guardian, database=db)
    return db.guardian.find_one({"guardianId": guardian_id})


def make_post(db, post_id="P-TEST0001", posted_by="guardian", status="open", **extra):
    data = {
        "postId": post_id,
        "userId": "owner",
        "postedBy": posted_by,
        "subject": "Mathematics",
        "className": "Class 10",
        "status": status,
    }
    data.update(extra)
    create_document("post", Post(**data), database=db)
    return db.post.find_one({"postId": post_id})


def make_admin(db, email="admin@aotf.in", role="super_admin", **extra):
    admin = Admin(email=email, password=hash_password(PASSWORD), name="Admin", role=role,
                  permissions=role_permissions(role) or {})
    data = admin.model_dump()
    data.update(extra)
    create_document("admin", data, database=db)
    return db.admin.find_one({"email": email})


def sign_in(client, domain_name, record, **claims):
    """Put a freshly minted session cookie for `record` on the client."""
    domain = DOMAINS[domain_name]
    token = issue_token(domain, str(record["_id"]), {"email": record.get("email"), **claims})
    client.cookies.set(primary_cookie_name(domain), token)
    return token
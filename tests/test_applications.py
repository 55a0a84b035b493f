import pytest
from fastapi import HTTPException

import applications
from conftest import make_admin, make_post, make_teacher, make_user, sign_in


@pytest.fixture
def teacher(db):
    return make_teacher(db, make_user(db, email="teacher@example.com", role="teacher", name="Asha"))


@pytest.fixture
def post(db):
    return make_post(db)


@pytest.fixture
def application(db, teacher, post):
    return applications.apply(db, post, "teacherId", str(teacher["_id"]))


@pytest.fixture
def requested(db, teacher, application):
    return applications.request_withdrawal(db, str(application["_id"]), "teacherId", teacher, "Moving city")


class _FailingCollection:
    def __init__(self, collection, method):
        self._collection = collection
        self._method = method

    def __getattr__(self, name):
        if name == self._method:
            def fail(*args, **kwargs):
                raise RuntimeError("write failed")
            return fail
        return getattr(self._collection, name)


class _FailingDb:
    """Delegates to a real database, failing one method on one collection."""

    def __init__(self, db, collection, method):
        self._db = db
        self._collection = collection
        self._method = method

    def __getitem__(self, name):
        collection = self._db[name]
        if name == self._collection:
            return _FailingCollection(collection, self._method)
        return collection


def _post(db, post):
    return db.post.find_one({"_id": post["_id"]})


# ----------------- Apply -----------------
def test_apply_links_application_to_post(db, teacher, post, application):
    assert application["status"] == "pending"
    updated = _post(db, post)
    assert updated["applicants"] == [str(teacher["_id"])]
    assert updated["applications"] == [str(application["_id"])]


def test_apply_twice_conflicts(db, teacher, post, application):
    with pytest.raises(HTTPException) as exc:
        applications.apply(db, _post(db, post), "teacherId", str(teacher["_id"]))
    assert exc.value.status_code == 409


def test_apply_to_closed_post(db, teacher):
    closed = make_post(db, post_id="P-CLOSED01", status="closed")
    with pytest.raises(HTTPException) as exc:
        applications.apply(db, closed, "teacherId", str(teacher["_id"]))
    assert exc.value.status_code == 400


# ----------------- Withdrawal request -----------------
def test_request_withdrawal(db, teacher, requested):
    assert requested["status"] == "withdrawal-requested"
    assert requested["withdrawalRequestedBy"] == teacher["teacherId"]
    notification = db.adminnotification.find_one({"applicationId": str(requested["_id"])})
    assert notification["status"] == "pending"
    assert notification["teacherName"] == "Asha"
    assert notification["withdrawalNote"] == "Moving city"


def test_request_withdrawal_twice(db, teacher, requested):
    with pytest.raises(HTTPException) as exc:
        applications.request_withdrawal(db, str(requested["_id"]), "teacherId", teacher)
    assert exc.value.status_code == 400
    assert db.adminnotification.count_documents({}) == 1


def test_request_withdrawal_by_someone_else(db, application):
    other = make_teacher(db, make_user(db, email="other@example.com", role="teacher"), teacher_id="AOT-ZZZZ9999")
    with pytest.raises(HTTPException) as exc:
        applications.request_withdrawal(db, str(application["_id"]), "teacherId", other)
    assert exc.value.status_code == 403


def test_request_withdrawal_on_completed(db, teacher, application):
    applications.set_status(db, str(application["_id"]), "completed")
    with pytest.raises(HTTPException) as exc:
        applications.request_withdrawal(db, str(application["_id"]), "teacherId", teacher)
    assert exc.value.status_code == 400


# ----------------- Approve / decline -----------------
def test_approve_withdrawal(db, post, requested):
    applications.approve_withdrawal(db, str(requested["_id"]), "admin@aotf.in")

    assert db.application.find_one({"_id": requested["_id"]}) is None
    updated = _post(db, post)
    assert updated["applicants"] == []
    assert updated["applications"] == []
    notification = db.adminnotification.find_one({"applicationId": str(requested["_id"])})
    assert notification["status"] == "approved"
    assert notification["processedBy"] == "admin@aotf.in"


def test_approve_non_withdrawal_has_no_side_effects(db, post, application):
    before_post = _post(db, post)
    with pytest.raises(HTTPException) as exc:
        applications.approve_withdrawal(db, str(application["_id"]), "admin@aotf.in")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Not a withdrawal request"
    assert db.application.find_one({"_id": application["_id"]})["status"] == "pending"
    assert _post(db, post) == before_post


def test_approve_missing_application(db):
    with pytest.raises(HTTPException) as exc:
        applications.approve_withdrawal(db, "0" * 24, "admin@aotf.in")
    assert exc.value.status_code == 404


def test_approve_twice_only_runs_once(db, requested):
    applications.approve_withdrawal(db, str(requested["_id"]), "admin@aotf.in")
    with pytest.raises(HTTPException) as exc:
        applications.approve_withdrawal(db, str(requested["_id"]), "admin@aotf.in")
    assert exc.value.status_code == 404


def test_approve_compensates_when_delete_fails(db, teacher, post, requested):
    failing = _FailingDb(db, "application", "delete_one")
    with pytest.raises(RuntimeError):
        applications.approve_withdrawal(failing, str(requested["_id"]), "admin@aotf.in")

    assert db.application.find_one({"_id": requested["_id"]})["status"] == "withdrawal-requested"
    assert _post(db, post)["applicants"] == [str(teacher["_id"])]
    assert _post(db, post)["applications"] == [str(requested["_id"])]
    notification = db.adminnotification.find_one({"applicationId": str(requested["_id"])})
    assert notification["status"] == "pending"
    assert "processedBy" not in notification


def test_approve_compensates_when_post_update_fails(db, teacher, post, requested):
    failing = _FailingDb(db, "post", "update_one")
    with pytest.raises(RuntimeError):
        applications.approve_withdrawal(failing, str(requested["_id"]), "admin@aotf.in")
    assert db.application.find_one({"_id": requested["_id"]})["status"] == "withdrawal-requested"
    assert db.adminnotification.find_one({})["status"] == "pending"


def test_decline_withdrawal(db, requested):
    updated = applications.decline_withdrawal(db, str(requested["_id"]), "admin@aotf.in")
    assert updated["status"] == "pending"
    for field in ("withdrawalNote", "withdrawalRequestedAt", "withdrawalRequestedBy"):
        assert field not in updated
    assert db.adminnotification.find_one({})["status"] == "declined"


def test_decline_without_request(db, application):
    with pytest.raises(HTTPException) as exc:
        applications.decline_withdrawal(db, str(application["_id"]), "admin@aotf.in")
    assert exc.value.status_code == 400


def test_set_status_blocked_during_withdrawal(db, requested):
    with pytest.raises(HTTPException) as exc:
        applications.set_status(db, str(requested["_id"]), "approved")
    assert exc.value.status_code == 409


def test_set_status_rejects_unknown_value(db, application):
    with pytest.raises(HTTPException) as exc:
        applications.set_status(db, str(application["_id"]), "withdrawal-requested")
    assert exc.value.status_code == 400


# ----------------- HTTP -----------------
def test_withdrawal_flow_over_http(db, tutorials_client, admin_client, post):
    user = make_user(db, email="teacher@example.com", role="teacher")
    make_teacher(db, user)
    sign_in(tutorials_client, "tutorials", user)

    applied = tutorials_client.post("/api/application/apply", json={"postId": post["postId"]}).json()
    application_id = applied["application"]["_id"]

    resp = tutorials_client.post(
        "/api/teacher/applications/request-withdrawal",
        json={"applicationId": application_id, "withdrawalNote": "Schedule clash"},
    )
    assert resp.json()["application"]["status"] == "withdrawal-requested"

    sign_in(admin_client, "admin", make_admin(db))
    pending = admin_client.get("/api/admin/withdrawal-requests").json()["requests"]
    assert [r["_id"] for r in pending] == [application_id]

    resp = admin_client.post("/api/admin/withdrawal-requests/approve", json={"applicationId": application_id})
    assert resp.json() == {"success": True}
    assert db.application.count_documents({}) == 0


def test_approve_endpoint_requires_application_id(db, admin_client):
    sign_in(admin_client, "admin", make_admin(db))
    resp = admin_client.post("/api/admin/withdrawal-requests/approve", json={})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Application ID required"}


def test_freelancer_flow(db, jobs_client):
    make_post(db, post_id="P-PROJ0001", posted_by="client")
    make_post(db, post_id="P-TUTR0001", posted_by="guardian")
    user = make_user(db, email="free@example.com", role="freelancer")
    sign_in(jobs_client, "jobs", user)

    assert jobs_client.post("/api/application/apply", json={"postId": "P-TUTR0001"}).status_code == 404
    application = jobs_client.post("/api/application/apply", json={"postId": "P-PROJ0001"}).json()["application"]
    assert application["freelancerId"] == str(user["_id"])

    resp = jobs_client.post(
        "/api/freelancer/applications/request-withdrawal", json={"applicationId": application["_id"]},
    )
    assert resp.json()["application"]["status"] == "withdrawal-requested"


def test_teacher_cannot_apply_to_client_project(db, tutorials_client):
    project = make_post(db, post_id="P-PROJ0001", posted_by="client")
    user = make_user(db, email="teacher@example.com", role="teacher")
    make_teacher(db, user)
    sign_in(tutorials_client, "tutorials", user)

    for post_id in ("P-PROJ0001", str(project["_id"])):
        resp = tutorials_client.post("/api/application/apply", json={"postId": post_id})
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Post not found"}
    assert db.post.find_one({"_id": project["_id"]})["applicants"] == []
    assert db.application.count_documents({}) == 0

"""
Applications to posts and the withdrawal workflow.

A withdrawal approval claims the application with a conditional update
(only from `withdrawal-requested`) before touching the post or the admin
notification, so two concurrent approvals cannot both run the dependent
writes. If a dependent write fails, the earlier ones are compensated.
"""

import logging
from typing import Optional

from fastapi import HTTPException
from pymongo import ReturnDocument

from database import create_document, utcnow
from queries import parse_object_id, serialize
from schemas import AdminNotification, Application
from sessions import DOMAINS, resolve_principal

logger = logging.getLogger(__name__)

APPROVING = "withdrawal-approving"
ADMIN_SETTABLE_STATUSES = ("pending", "approved", "declined", "completed")


def _application_oid(application_id) -> object:
    if not application_id:
        raise HTTPException(status_code=400, detail="Application ID required")
    oid = parse_object_id(application_id)
    if oid is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return oid


def _applicant(application: dict) -> tuple:
    if application.get("teacherId"):
        return "teacherId", application["teacherId"]
    return "freelancerId", application.get("freelancerId")


def apply(db, post: dict, applicant_field: str, applicant_id: str) -> dict:
    if post.get("status") != "open":
        raise HTTPException(status_code=400, detail="Post is not accepting applications")
    post_id = str(post["_id"])
    if db["application"].find_one({"postId": post_id, applicant_field: applicant_id}):
        raise HTTPException(status_code=409, detail="You have already applied to this post")

    application = Application(postId=post_id, appliedAt=utcnow(), **{applicant_field: applicant_id})
    application_id = create_document("application", application, database=db)
    db["post"].update_one(
        {"_id": post["_id"]},
        {"$addToSet": {"applicants": applicant_id, "applications": application_id}},
    )
    logger.info("Application %s created for post %s by %s", application_id, post_id, applicant_id)
    return db["application"].find_one({"_id": parse_object_id(application_id)})


def viewing_teacher(db, cookies) -> Optional[dict]:
    """The teacher profile behind a tutorials session cookie, if there is one."""
    principal = resolve_principal(DOMAINS["tutorials"], cookies)
    if principal is None:
        return None
    return db["teacher"].find_one({"userId": principal.id})


def post_detail(db, post: dict, teacher: Optional[dict] = None) -> dict:
    post_id = str(post["_id"])
    detail = serialize(post, exclude=("email", "phone", "applicants", "applications"))
    detail["applicantCount"] = len(post.get("applicants") or [])
    detail["hasApplied"] = False
    if teacher:
        applied = db["application"].find_one({"postId": post_id, "teacherId": str(teacher["_id"])}, {"_id": 1})
        detail["hasApplied"] = applied is not None
    detail["hasApprovedTeacher"] = db["application"].find_one(
        {"postId": post_id, "status": "approved"}, {"_id": 1},
    ) is not None
    return detail


def request_withdrawal(db, application_id, applicant_field: str, applicant: dict, note: Optional[str] = None) -> dict:
    """`applicant` is the teacher profile (tutorials) or the user record (jobs)."""
    oid = _application_oid(application_id)
    application = db["application"].find_one({"_id": oid})
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")

    applicant_id = str(applicant["_id"])
    if str(application.get(applicant_field)) != applicant_id:
        raise HTTPException(status_code=403, detail="Unauthorized to withdraw this application")

    status = application.get("status")
    if status in ("withdrawal-requested", APPROVING):
        raise HTTPException(status_code=400, detail="Withdrawal request already pending")
    if status == "completed":
        raise HTTPException(status_code=400, detail="Cannot withdraw completed application")

    now = utcnow()
    custom_id = applicant.get("teacherId") or applicant_id
    note = (note or "")[:500]
    updated = db["application"].find_one_and_update(
        {"_id": oid, "status": status},
        {"$set": {
            "status": "withdrawal-requested",
            "withdrawalRequestedAt": now,
            "withdrawalRequestedBy": custom_id,
            "withdrawalNote": note,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Application changed, please retry")

    notification = AdminNotification(
        type="withdrawal-request",
        applicationId=str(oid),
        teacherId=applicant_id,
        teacherName=applicant.get("name") or "Unknown",
        teacherCustomId=custom_id,
        postId=application["postId"],
        withdrawalNote=note,
        requestedAt=now,
    )
    create_document("adminnotification", notification, database=db)
    logger.info("Withdrawal requested for application %s", oid)
    return updated


def approve_withdrawal(db, application_id, admin_id: str) -> None:
    oid = _application_oid(application_id)
    claimed = db["application"].find_one_and_update(
        {"_id": oid, "status": "withdrawal-requested"},
        {"$set": {"status": APPROVING, "updatedAt": utcnow()}},
    )
    if claimed is None:
        if db["application"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise HTTPException(status_code=404, detail="Application not found")
        raise HTTPException(status_code=400, detail="Not a withdrawal request")

    _, applicant_id = _applicant(claimed)
    post_oid = parse_object_id(claimed["postId"])
    now = utcnow()
    pulled = notified = False
    try:
        db["post"].update_one(
            {"_id": post_oid},
            {"$pull": {"applicants": applicant_id, "applications": str(oid)}},
        )
        pulled = True
        db["adminnotification"].update_many(
            {"applicationId": str(oid), "status": "pending"},
            {"$set": {"status": "approved", "processedAt": now, "processedBy": admin_id}},
        )
        notified = True
        db["application"].delete_one({"_id": oid, "status": APPROVING})
    except Exception:
        logger.exception("Withdrawal approval failed for application %s, compensating", oid)
        if notified:
            db["adminnotification"].update_many(
                {"applicationId": str(oid), "status": "approved", "processedBy": admin_id},
                {"$set": {"status": "pending"}, "$unset": {"processedAt": "", "processedBy": ""}},
            )
        if pulled:
            db["post"].update_one(
                {"_id": post_oid},
                {"$addToSet": {"applicants": applicant_id, "applications": str(oid)}},
            )
        db["application"].update_one({"_id": oid, "status": APPROVING}, {"$set": {"status": "withdrawal-requested"}})
        raise
    logger.info("Withdrawal approved for application %s by %s", oid, admin_id)


def decline_withdrawal(db, application_id, admin_id: str) -> dict:
    oid = _application_oid(application_id)
    updated = db["application"].find_one_and_update(
        {"_id": oid, "status": "withdrawal-requested"},
        {
            "$set": {"status": "pending", "updatedAt": utcnow()},
            "$unset": {"withdrawalNote": "", "withdrawalRequestedAt": "", "withdrawalRequestedBy": ""},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if db["application"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise HTTPException(status_code=404, detail="Application not found")
        raise HTTPException(status_code=400, detail="No pending withdrawal request for this application")

    db["adminnotification"].update_many(
        {"applicationId": str(oid), "status": "pending"},
        {"$set": {"status": "declined", "processedAt": utcnow(), "processedBy": admin_id}},
    )
    logger.info("Withdrawal declined for application %s by %s", oid, admin_id)
    return updated


def set_status(db, application_id, status: str) -> dict:
    if status not in ADMIN_SETTABLE_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status value")
    oid = _application_oid(application_id)
    updated = db["application"].find_one_and_update(
        {"_id": oid, "status": {"$nin": ["withdrawal-requested", APPROVING]}},
        {"$set": {"status": status, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if db["application"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise HTTPException(status_code=404, detail="Application not found")
        raise HTTPException(status_code=409, detail="Application has a pending withdrawal request")
    return updated

"""
Tutorials app: teachers and guardians.
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

import accounts
import applications
import payments
from config import TUTORIALS_APP_URL
from database import create_document, get_db, utcnow
from queries import (
    SEARCH_FIELDS, PageParams, find_by_custom_id_or_id, find_by_id_or_custom_id, merge_filters, paginate,
    parse_object_id, search_filter, serialize,
)
from schemas import Guardian, Post, Teacher
from sessions import DOMAINS, Principal, clear_session_cookie, current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter()

DOMAIN = "tutorials"
ROLES = ("teacher", "guardian")

signed_in = current_user(DOMAIN)
teacher_user = require_role(DOMAIN, "teacher")
guardian_user = require_role(DOMAIN, "guardian")


# ----------------- Models -----------------
class TeacherRegisterRequest(BaseModel):
    name: str
    phone: str
    location: str
    experience: Optional[str] = None
    qualifications: Optional[str] = None
    schoolBoard: Optional[str] = None
    subjectsTeaching: List[str] = []
    teachingMode: Optional[str] = None
    bio: Optional[str] = None
    hourlyRate: Optional[str] = None
    availability: Optional[str] = None


class TeacherProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    experience: Optional[str] = None
    qualifications: Optional[str] = None
    schoolBoard: Optional[str] = None
    subjectsTeaching: Optional[List[str]] = None
    teachingMode: Optional[str] = None
    bio: Optional[str] = None
    hourlyRate: Optional[str] = None
    availability: Optional[str] = None


class GuardianRegisterRequest(BaseModel):
    name: str
    phone: str
    location: str
    grade: Optional[str] = None
    subjectsOfInterest: List[str] = []
    learningMode: Optional[str] = None


class GuardianProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    grade: Optional[str] = None
    subjectsOfInterest: Optional[List[str]] = None
    learningMode: Optional[str] = None


class CreatePostRequest(BaseModel):
    subject: str
    className: str
    board: Optional[Literal["CBSE", "ICSE", "WBBSE", "ISC", "WBCHS"]] = None
    location: Optional[str] = None
    monthlyBudget: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class ApplyRequest(BaseModel):
    postId: str


class WithdrawalRequest(BaseModel):
    applicationId: str
    withdrawalNote: Optional[str] = Field(None, max_length=500)


class VerifyPaymentRequest(BaseModel):
    sessionId: str


# ----------------- Helpers -----------------
def teacher_profile(principal: Principal = Depends(teacher_user), db=Depends(get_db)) -> dict:
    teacher = db["teacher"].find_one({"userId": principal.id})
    if not teacher:
        raise HTTPException(status_code=403, detail="Teacher access required")
    return teacher


def guardian_profile(principal: Principal = Depends(guardian_user), db=Depends(get_db)) -> dict:
    guardian = db["guardian"].find_one({"userId": principal.id})
    if not guardian:
        raise HTTPException(status_code=403, detail="Guardian access required")
    return guardian


def _ensure_no_profile(db, user_id: str) -> None:
    if db["teacher"].find_one({"userId": user_id}) or db["guardian"].find_one({"userId": user_id}):
        raise HTTPException(status_code=400, detail="Profile already exists")


def _changes(update: BaseModel) -> dict:
    return {k: v for k, v in update.model_dump(exclude_unset=True).items() if v is not None}


# ----------------- Auth -----------------
@router.post("/api/auth/login")
def login(req: accounts.LoginRequest, response: Response, db=Depends(get_db)):
    user = accounts.login(db, DOMAIN, req, response)
    return {"success": True, "user": accounts.public_user(user)}


@router.post("/api/auth/logout")
def logout(response: Response):
    clear_session_cookie(response, DOMAINS[DOMAIN])
    return {"success": True}


@router.post("/api/auth/change-password")
def change_password(
    req: accounts.ChangePasswordRequest,
    response: Response,
    principal: Principal = Depends(signed_in),
    db=Depends(get_db),
):
    accounts.change_password(db, principal.record, req)
    # the old session ends here; the user signs in again with the new password
    clear_session_cookie(response, DOMAINS[DOMAIN])
    return {"success": True, "message": "Password changed successfully"}


@router.get("/api/auth/me")
def me(principal: Principal = Depends(signed_in), db=Depends(get_db)):
    return {
        "success": True,
        "user": accounts.public_user(principal.record),
        "teacher": serialize(db["teacher"].find_one({"userId": principal.id})),
        "guardian": serialize(db["guardian"].find_one({"userId": principal.id})),
    }


@router.post("/api/user/set-role")
def set_role(req: accounts.SetRoleRequest, principal: Principal = Depends(signed_in), db=Depends(get_db)):
    user = accounts.set_role(db, principal.record, req.role, ROLES)
    return {"success": True, "user": accounts.public_user(user)}


# ----------------- Teacher -----------------
@router.post("/api/teacher/register")
def register_teacher(req: TeacherRegisterRequest, principal: Principal = Depends(teacher_user), db=Depends(get_db)):
    _ensure_no_profile(db, principal.id)
    teacher = Teacher(
        teacherId=accounts.generate_custom_id(db["teacher"], "teacherId", "AOT-", 8),
        userId=principal.id,
        email=principal.email,
        **req.model_dump(),
    )
    teacher_id = create_document("teacher", teacher, database=db)
    db["user"].update_one({"_id": principal.record["_id"]}, {"$set": {"onboardingCompleted": True, "name": req.name}})
    logger.info("Teacher %s registered", teacher.teacherId)
    return {"success": True, "teacher": serialize(db["teacher"].find_one({"_id": parse_object_id(teacher_id)}))}


@router.get("/api/teacher/profile")
def get_teacher_profile(teacher: dict = Depends(teacher_profile)):
    return {"success": True, "teacher": serialize(teacher)}


@router.patch("/api/teacher/profile")
def update_teacher_profile(update: TeacherProfileUpdate, teacher: dict = Depends(teacher_profile), db=Depends(get_db)):
    changes = _changes(update)
    if changes:
        changes["updatedAt"] = utcnow()
        db["teacher"].update_one({"_id": teacher["_id"]}, {"$set": changes})
    return {"success": True, "teacher": serialize(db["teacher"].find_one({"_id": teacher["_id"]}))}


@router.get("/api/teacher/applications")
def teacher_applications(teacher: dict = Depends(teacher_profile), db=Depends(get_db)):
    rows = list(db["application"].find({"teacherId": str(teacher["_id"])}).sort("appliedAt", -1))
    post_ids = [parse_object_id(r["postId"]) for r in rows]
    posts = {str(p["_id"]): p for p in db["post"].find({"_id": {"$in": [p for p in post_ids if p]}})}
    out = []
    for row in rows:
        item = serialize(row)
        item["post"] = serialize(posts.get(row["postId"]), exclude=("email", "phone", "applicants"))
        out.append(item)
    return {"success": True, "applications": out}


@router.post("/api/teacher/applications/request-withdrawal")
def request_withdrawal(req: WithdrawalRequest, teacher: dict = Depends(teacher_profile), db=Depends(get_db)):
    updated = applications.request_withdrawal(db, req.applicationId, "teacherId", teacher, req.withdrawalNote)
    return {
        "success": True,
        "message": "Withdrawal request submitted successfully. Waiting for admin approval.",
        "application": serialize(updated),
    }


@router.post("/api/application/apply")
def apply(req: ApplyRequest, teacher: dict = Depends(teacher_profile), db=Depends(get_db)):
    post = find_by_id_or_custom_id(db["post"], req.postId, "postId")
    if not post or post.get("postedBy") != "guardian":
        raise HTTPException(status_code=404, detail="Post not found")
    application = applications.apply(db, post, "teacherId", str(teacher["_id"]))
    return {"success": True, "application": serialize(application)}


# ----------------- Guardian -----------------
@router.post("/api/guardian/register")
def register_guardian(req: GuardianRegisterRequest, principal: Principal = Depends(guardian_user), db=Depends(get_db)):
    _ensure_no_profile(db, principal.id)
    guardian = Guardian(
        guardianId=accounts.generate_custom_id(db["guardian"], "guardianId", "AOG-", 5),
        userId=principal.id,
        email=principal.email,
        **req.model_dump(),
    )
    guardian_id = create_document("guardian", guardian, database=db)
    db["user"].update_one({"_id": principal.record["_id"]}, {"$set": {"onboardingCompleted": True, "name": req.name}})
    logger.info("Guardian %s registered", guardian.guardianId)
    return {"success": True, "guardian": serialize(db["guardian"].find_one({"_id": parse_object_id(guardian_id)}))}


@router.get("/api/guardian/profile")
def get_guardian_profile(guardian: dict = Depends(guardian_profile)):
    return {"success": True, "guardian": serialize(guardian)}


@router.patch("/api/guardian/profile")
def update_guardian_profile(update: GuardianProfileUpdate, guardian: dict = Depends(guardian_profile), db=Depends(get_db)):
    changes = _changes(update)
    if changes:
        changes["updatedAt"] = utcnow()
        db["guardian"].update_one({"_id": guardian["_id"]}, {"$set": changes})
    return {"success": True, "guardian": serialize(db["guardian"].find_one({"_id": guardian["_id"]}))}


@router.get("/api/guardian/posts")
def guardian_posts(guardian: dict = Depends(guardian_profile), db=Depends(get_db)):
    posts = db["post"].find({"guardianId": guardian["guardianId"]}).sort("createdAt", -1)
    return {"success": True, "posts": [serialize(p) for p in posts]}


@router.post("/api/guardian/posts")
def create_guardian_post(req: CreatePostRequest, guardian: dict = Depends(guardian_profile), db=Depends(get_db)):
    post = Post(
        postId=accounts.generate_custom_id(db["post"], "postId", "P-", 8),
        userId=guardian["userId"],
        postedBy="guardian",
        guardianId=guardian["guardianId"],
        name=guardian.get("name"),
        email=guardian.get("email"),
        **req.model_dump(),
    )
    post_id = create_document("post", post, database=db)
    logger.info("Post %s created by guardian %s", post.postId, guardian["guardianId"])
    return {"success": True, "post": serialize(db["post"].find_one({"_id": parse_object_id(post_id)}))}


# ----------------- Feed -----------------
@router.get("/api/posts/list")
def list_posts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    principal: Principal = Depends(signed_in),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters(
        {"status": "open", "postedBy": "guardian"},
        search_filter(search, SEARCH_FIELDS["post"]),
    )
    posts, pagination = paginate(db["post"], query, params)
    return {
        "success": True,
        "posts": [serialize(p, exclude=("password", "email", "phone", "applicants")) for p in posts],
        "pagination": pagination,
    }


@router.get("/api/feed/posts/{post_id}")
def feed_post(post_id: str, request: Request, db=Depends(get_db)):
    post = find_by_custom_id_or_id(db["post"], post_id, "postId")
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    teacher = applications.viewing_teacher(db, request.cookies)
    return {"success": True, "post": applications.post_detail(db, post, teacher)}


# ----------------- Payment -----------------
@router.post("/api/payment/create-order")
def create_order(teacher: dict = Depends(teacher_profile)):
    if teacher.get("registrationFeeStatus") == "paid":
        raise HTTPException(status_code=400, detail="Registration fee already paid")
    checkout = payments.create_checkout(
        email=teacher["email"],
        user_id=teacher["userId"],
        purpose="teacher",
        success_url=f"{TUTORIALS_APP_URL}/onboarding/payment-success",
        cancel_url=f"{TUTORIALS_APP_URL}/onboarding",
    )
    return {"success": True, **checkout}


@router.post("/api/payment/verify")
def verify_payment(req: VerifyPaymentRequest, teacher: dict = Depends(teacher_profile), db=Depends(get_db)):
    payment_id = payments.verify_checkout(req.sessionId, teacher["userId"])
    if payment_id is None:
        db["teacher"].update_one({"_id": teacher["_id"]}, {"$set": {"registrationFeeStatus": "failed"}})
        raise HTTPException(status_code=400, detail="Payment not completed")
    db["teacher"].update_one(
        {"_id": teacher["_id"]},
        {"$set": {
            "registrationFeeStatus": "paid",
            "paymentVerifiedAt": utcnow(),
            "paymentId": payment_id,
        }},
    )
    logger.info("Registration fee verified for teacher %s", teacher["teacherId"])
    return {"success": True, "registrationFeeStatus": "paid"}

"""
Jobs app: freelancers and clients.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

import accounts
import applications
from database import create_document, get_db
from queries import (
    SEARCH_FIELDS, PageParams, find_by_id_or_custom_id, merge_filters, paginate,
    parse_object_id, search_filter, serialize,
)
from schemas import Post
from sessions import DOMAINS, Principal, clear_session_cookie, current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter()

DOMAIN = "jobs"
ROLES = ("freelancer", "client")

signed_in = current_user(DOMAIN)
freelancer_user = require_role(DOMAIN, "freelancer")
client_user = require_role(DOMAIN, "client")


class CreateProjectRequest(BaseModel):
    subject: str = Field(..., description="Project title")
    className: str = Field(..., description="Category")
    location: Optional[str] = None
    monthlyBudget: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class ApplyRequest(BaseModel):
    postId: str


class WithdrawalRequest(BaseModel):
    applicationId: str
    withdrawalNote: Optional[str] = Field(None, max_length=500)


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
def me(principal: Principal = Depends(signed_in)):
    return {"success": True, "user": accounts.public_user(principal.record)}


@router.post("/api/user/set-role")
def set_role(req: accounts.SetRoleRequest, principal: Principal = Depends(signed_in), db=Depends(get_db)):
    user = accounts.set_role(db, principal.record, req.role, ROLES)
    if not user.get("onboardingCompleted"):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"onboardingCompleted": True}})
    return {"success": True, "user": accounts.public_user(user)}


# ----------------- Projects -----------------
@router.post("/api/posts/create")
def create_project(req: CreateProjectRequest, principal: Principal = Depends(client_user), db=Depends(get_db)):
    user = principal.record
    post = Post(
        postId=accounts.generate_custom_id(db["post"], "postId", "P-", 8),
        userId=principal.id,
        postedBy="client",
        clientId=principal.id,
        name=user.get("name"),
        email=user.get("email"),
        **req.model_dump(),
    )
    post_id = create_document("post", post, database=db)
    logger.info("Project %s created by client %s", post.postId, principal.id)
    return {"success": True, "post": serialize(db["post"].find_one({"_id": parse_object_id(post_id)}))}


@router.get("/api/posts/list")
def list_projects(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    principal: Principal = Depends(signed_in),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters(
        {"status": "open", "postedBy": "client"},
        search_filter(search, SEARCH_FIELDS["post"]),
    )
    posts, pagination = paginate(db["post"], query, params)
    return {
        "success": True,
        "posts": [serialize(p, exclude=("password", "email", "phone", "applicants")) for p in posts],
        "pagination": pagination,
    }


@router.get("/api/client/posts")
def client_posts(principal: Principal = Depends(client_user), db=Depends(get_db)):
    posts: List[dict] = list(db["post"].find({"clientId": principal.id}).sort("createdAt", -1))
    return {"success": True, "posts": [serialize(p) for p in posts]}


# ----------------- Applications -----------------
@router.post("/api/application/apply")
def apply(req: ApplyRequest, principal: Principal = Depends(freelancer_user), db=Depends(get_db)):
    post = find_by_id_or_custom_id(db["post"], req.postId, "postId")
    if not post or post.get("postedBy") != "client":
        raise HTTPException(status_code=404, detail="Post not found")
    application = applications.apply(db, post, "freelancerId", principal.id)
    return {"success": True, "application": serialize(application)}


@router.get("/api/freelancer/applications")
def freelancer_applications(principal: Principal = Depends(freelancer_user), db=Depends(get_db)):
    rows = db["application"].find({"freelancerId": principal.id}).sort("appliedAt", -1)
    return {"success": True, "applications": [serialize(r) for r in rows]}


@router.post("/api/freelancer/applications/request-withdrawal")
def request_withdrawal(req: WithdrawalRequest, principal: Principal = Depends(freelancer_user), db=Depends(get_db)):
    updated = applications.request_withdrawal(db, req.applicationId, "freelancerId", principal.record, req.withdrawalNote)
    return {
        "success": True,
        "message": "Withdrawal request submitted successfully. Waiting for admin approval.",
        "application": serialize(updated),
    }

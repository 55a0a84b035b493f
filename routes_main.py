"""
Main marketing/signup site. It never signs anyone in: login,
registration and role choice live on the tutorials and jobs apps, and the
old endpoints here answer 410 with a pointer to the right place.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

import accounts
import applications
from config import JOBS_APP_URL, TUTORIALS_APP_URL
from database import get_db, utcnow
from queries import (
    SEARCH_FIELDS, PageParams, find_by_custom_id_or_id, merge_filters, paginate, search_filter, serialize,
)

logger = logging.getLogger(__name__)

router = APIRouter()

BOUNCE_EVENTS = {"email.bounced", "email.delivery_bounced", "email.hard_bounced", "email.soft_bounced"}


def retired(status_code: int = 410, **body) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"success": False, **body})


# ----------------- Signup -----------------
@router.post("/api/auth/signup")
def signup(req: accounts.SignupRequest, db=Depends(get_db)):
    user = accounts.signup(db, req)
    return {
        "success": True,
        "user": accounts.public_user(user),
        "redirectOptions": {
            "tutorials": f"{TUTORIALS_APP_URL}/login",
            "jobs": f"{JOBS_APP_URL}/login",
        },
    }


@router.get("/api/auth/email-status")
def email_status(email: str = Query(...), db=Depends(get_db)):
    user = db["user"].find_one({"email": accounts.normalise_email(email)}, {"emailStatus": 1})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    status = serialize(user.get("emailStatus") or {})
    return {
        "success": True,
        "bounced": bool(status.get("bounced")),
        "bounceReason": status.get("bounceReason"),
        "bouncedAt": status.get("bouncedAt"),
    }


# ----------------- Retired endpoints -----------------
@router.post("/api/auth/login")
def login_retired():
    raise retired(
        error="Login is not available on the main app. Please login at tutorials or jobs.",
        redirectOptions={
            "tutorials": f"{TUTORIALS_APP_URL}/login",
            "jobs": f"{JOBS_APP_URL}/login",
        },
    )


@router.post("/api/auth/admin/login")
def admin_login_retired():
    raise retired(error="Admin login is only available on the admin app.")


@router.post("/api/teacher/register")
def teacher_register_retired():
    raise retired(
        error="Teacher registration is not available on the main app.",
        message=f"Please visit {TUTORIALS_APP_URL} and complete your onboarding there.",
        redirectTo=f"{TUTORIALS_APP_URL}/login",
    )


@router.post("/api/freelancer/register")
def freelancer_register_retired():
    raise retired(
        error="Freelancer registration is not available on the main app.",
        message=f"Please visit {JOBS_APP_URL} and complete your onboarding there.",
        redirectTo=f"{JOBS_APP_URL}/login",
    )


@router.post("/api/user/set-role")
def set_role_retired():
    raise retired(
        error="Role assignment is not available on the main app. Please complete onboarding on Tutorials or Jobs app.",
    )


# ----------------- Public feed -----------------
@router.get("/api/feed/posts")
def feed_posts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters({"status": "open"}, search_filter(search, SEARCH_FIELDS["post"]))
    posts, pagination = paginate(db["post"], query, params)
    return {"success": True, "posts": [serialize(p, exclude=("email", "phone")) for p in posts], "pagination": pagination}


@router.get("/api/feed/posts/{post_id}")
def feed_post(post_id: str, request: Request, db=Depends(get_db)):
    post = find_by_custom_id_or_id(db["post"], post_id, "postId")
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    teacher = applications.viewing_teacher(db, request.cookies)
    return {"success": True, "post": applications.post_detail(db, post, teacher)}


# ----------------- Email webhooks -----------------
def _recipients(payload: Dict[str, Any], data: Dict[str, Any]) -> List[str]:
    to_field = data.get("to", payload.get("to"))
    if isinstance(to_field, list):
        recipients = to_field
    elif isinstance(to_field, str):
        recipients = [to_field]
    elif isinstance(data.get("recipient"), str):
        recipients = [data["recipient"]]
    else:
        recipients = []
    return [r for r in (str(e).strip().lower() for e in recipients) if r]


def _occurred_at(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return utcnow()


@router.post("/api/webhooks/resend")
async def resend_webhook(request: Request, db=Depends(get_db)):
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    event = payload.get("type") or payload.get("event") or ""
    data = payload.get("data") or payload.get("payload") or payload
    if not isinstance(data, dict):
        data = {}
    recipients = _recipients(payload, data)
    if not event or not recipients:
        return {"ok": True, "ignored": True}

    if event in BOUNCE_EVENTS:
        bounce = data.get("bounce") if isinstance(data.get("bounce"), dict) else {}
        reason = bounce.get("reason") or data.get("reason") or data.get("error")
        result = db["user"].update_many(
            {"email": {"$in": recipients}},
            {"$set": {
                "emailStatus.bounced": True,
                "emailStatus.bouncedAt": _occurred_at(data.get("created_at") or payload.get("created_at")),
                "emailStatus.bounceReason": reason,
            }},
        )
        logger.info("Marked %d user(s) as bounced (%s)", result.modified_count, event)
    elif event == "email.delivered":
        db["user"].update_many(
            {"email": {"$in": recipients}},
            {
                "$set": {"emailStatus.bounced": False},
                "$unset": {"emailStatus.bouncedAt": "", "emailStatus.bounceReason": ""},
            },
        )
    else:
        return {"ok": True, "ignored": True}
    return {"ok": True}


@router.get("/api/webhooks/resend")
def resend_webhook_health():
    return {"ok": True}

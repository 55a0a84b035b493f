"""
User accounts shared by the tutorials and jobs apps: signup, login and
the onboarding role choice. Each app mints its own session cookie.
"""

import logging
import random
import string
from typing import Optional

from fastapi import HTTPException, Response
from pydantic import BaseModel, EmailStr, Field

from database import create_document, utcnow
from queries import parse_object_id, serialize
from schemas import User
from sessions import DOMAINS, hash_password, issue_token, set_session_cookie, verify_password

logger = logging.getLogger(__name__)


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = ""


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SetRoleRequest(BaseModel):
    role: str


class ChangePasswordRequest(BaseModel):
    currentPassword: str = ""
    newPassword: str = ""
    confirmPassword: str = ""


def normalise_email(email: str) -> str:
    return email.strip().lower()


def generate_custom_id(collection, field: str, prefix: str, length: int) -> str:
    alphabet = string.ascii_uppercase + string.digits
    while True:
        candidate = prefix + "".join(random.choice(alphabet) for _ in range(length))
        if collection.find_one({field: candidate}, {"_id": 1}) is None:
            return candidate


def signup(db, req: SignupRequest) -> dict:
    email = normalise_email(req.email)
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(email=email, password=hash_password(req.password), name=req.name.strip())
    user_id = create_document("user", user, database=db)
    logger.info("User %s signed up", user_id)
    return db["user"].find_one({"_id": parse_object_id(user_id)})


def login(db, domain_name: str, req: LoginRequest, response: Response) -> dict:
    domain = DOMAINS[domain_name]
    user = db["user"].find_one({"email": normalise_email(req.email)})
    if not user or not verify_password(req.password, user.get("password")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")

    token = issue_token(domain, str(user["_id"]), {"email": user["email"], "role": user.get("role")})
    set_session_cookie(response, domain, token)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"lastLogin": utcnow()}})
    logger.info("User %s logged in to %s", user["_id"], domain_name)
    return user


def set_role(db, user: dict, role: str, allowed: tuple) -> dict:
    if role not in allowed:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(allowed)}")
    current: Optional[str] = user.get("role")
    if current and current != role:
        raise HTTPException(status_code=400, detail=f"Role already set to {current}")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updatedAt": utcnow()}})
    user = dict(user, role=role)
    return user


def change_password(db, user: dict, req: ChangePasswordRequest) -> None:
    if not req.currentPassword or not req.newPassword or not req.confirmPassword:
        raise HTTPException(status_code=400, detail="All fields are required")
    if len(req.newPassword) < 6:
        raise HTTPException(status_code=400, detail="New password must be at least 6 characters long")
    if req.newPassword != req.confirmPassword:
        raise HTTPException(status_code=400, detail="New passwords do not match")
    if req.newPassword == req.currentPassword:
        raise HTTPException(status_code=400, detail="New password must be different from current password")
    if not verify_password(req.currentPassword, user.get("password")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(req.newPassword), "updatedAt": utcnow()}},
    )
    logger.info("User %s changed password", user["_id"])


def public_user(user: dict) -> dict:
    out = serialize(user)
    return {
        "id": out["id"],
        "email": out.get("email"),
        "name": out.get("name", ""),
        "role": out.get("role"),
        "onboardingCompleted": out.get("onboardingCompleted", False),
        "createdAt": out.get("createdAt"),
    }

"""
Admin dashboard API. Every route except login/logout needs an admin session,
and most need a specific permission on top.
"""

import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, EmailStr, Field

import ads
import applications
import invoices
from config import COMPANY, SETTINGS_KEY, WEBSITE_URL
from database import create_document, get_db, utcnow
from permissions import ROLE_DISPLAY_NAMES, effective_permissions
from queries import (
    SEARCH_FIELDS, PageParams, find_by_id_or_custom_id, merge_filters, paginate,
    parse_object_id, search_filter, serialize,
)
from schemas import POST_STATUSES, CompanyInfo, Invoice, InvoiceItem, Setting
from sessions import (
    DOMAINS, Principal, clear_session_cookie, current_admin, issue_token,
    require_permission, set_session_cookie, verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ADMIN = DOMAINS["admin"]


# ----------------- Models -----------------
class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class TeacherUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    experience: Optional[str] = None
    qualifications: Optional[str] = None
    schoolBoard: Optional[str] = None
    subjectsTeaching: Optional[List[str]] = None
    bio: Optional[str] = None
    registrationFeeStatus: Optional[Literal["pending", "paid", "failed"]] = None


class GuardianUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    grade: Optional[str] = None
    subjectsOfInterest: Optional[List[str]] = None
    learningMode: Optional[str] = None


class PostUpdateRequest(BaseModel):
    subject: Optional[str] = None
    className: Optional[str] = None
    board: Optional[Literal["CBSE", "ICSE", "WBBSE", "ISC", "WBCHS"]] = None
    location: Optional[str] = None
    monthlyBudget: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class PostStatusRequest(BaseModel):
    postId: Optional[str] = None
    status: Optional[str] = None


class ApplicationActionRequest(BaseModel):
    applicationId: Optional[str] = None


class ApplicationStatusRequest(BaseModel):
    applicationId: Optional[str] = None
    status: Optional[str] = None


class NotificationReadRequest(BaseModel):
    ids: List[str] = []
    all: bool = False


class AdCreateRequest(BaseModel):
    title: str
    imageUrl: str
    link: str
    status: Optional[Literal["active", "inactive"]] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class AdUpdateRequest(BaseModel):
    id: str
    title: Optional[str] = None
    imageUrl: Optional[str] = None
    link: Optional[str] = None
    status: Optional[Literal["active", "inactive", "scheduled", "expired"]] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class AdDeleteRequest(BaseModel):
    id: str


class InvoiceCreateRequest(BaseModel):
    invoiceNumber: Optional[str] = Field(None, max_length=6)
    invoiceDate: Optional[datetime] = None
    paymentDate: Optional[datetime] = None
    paymentStatus: Literal["paid", "unpaid"] = "unpaid"
    yourCompany: Optional[CompanyInfo] = None
    billTo: CompanyInfo
    shipTo: Optional[CompanyInfo] = None
    items: List[InvoiceItem] = Field(..., min_length=1)
    taxPercentage: float = Field(0, ge=0)
    notes: str = ""
    currency: str = "INR"
    postId: Optional[str] = None


def _changes(update: BaseModel) -> dict:
    return {k: v for k, v in update.model_dump(exclude_unset=True).items() if v is not None}


def _admin_payload(admin: dict) -> dict:
    out = serialize(admin)
    return {
        "id": out["id"],
        "email": out.get("email"),
        "name": out.get("name"),
        "role": out.get("role"),
        "roleName": ROLE_DISPLAY_NAMES.get(out.get("role"), out.get("role")),
        "permissions": effective_permissions(admin),
        "lastLogin": out.get("lastLogin"),
    }


# ----------------- Auth -----------------
@router.post("/api/auth/admin/login")
def admin_login(req: AdminLoginRequest, response: Response, db=Depends(get_db)):
    admin = db["admin"].find_one({"email": req.email.strip().lower()})
    if not admin or not verify_password(req.password, admin.get("password")):
        raise HTTPException(status_code=401, detail="Invalid admin credentials")
    if not admin.get("isActive", True):
        raise HTTPException(status_code=403, detail="Admin account is deactivated")

    now = utcnow()
    db["admin"].update_one({"_id": admin["_id"]}, {"$set": {"lastLogin": now}})
    admin["lastLogin"] = now
    token = issue_token(ADMIN, str(admin["_id"]), {"email": admin["email"], "role": admin.get("role"), "isAdmin": True})
    set_session_cookie(response, ADMIN, token)
    logger.info("Admin %s logged in", admin["_id"])
    return {"success": True, "admin": _admin_payload(admin)}


@router.post("/api/auth/admin/logout")
def admin_logout(response: Response):
    clear_session_cookie(response, ADMIN)
    return {"success": True}


@router.get("/api/auth/admin/verify")
def admin_verify(admin: Principal = Depends(current_admin)):
    return {"success": True, "admin": _admin_payload(admin.record)}


# ----------------- Dashboard -----------------
@router.get("/api/dashboard/stats")
def dashboard_stats(admin: Principal = Depends(require_permission("dashboard")), db=Depends(get_db)):
    return {
        "success": True,
        "stats": {
            "users": db["user"].count_documents({}),
            "teachers": db["teacher"].count_documents({}),
            "guardians": db["guardian"].count_documents({}),
            "posts": db["post"].count_documents({}),
            "openPosts": db["post"].count_documents({"status": "open"}),
            "applications": db["application"].count_documents({}),
            "pendingWithdrawals": db["application"].count_documents({"status": "withdrawal-requested"}),
            "ads": ads.status_counts(db),
        },
    }


# ----------------- Teachers & guardians -----------------
@router.get("/api/teacher/get-all")
def get_all_teachers(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    admin: Principal = Depends(require_permission("teachers")),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    teachers, pagination = paginate(db["teacher"], search_filter(search, SEARCH_FIELDS["teacher"]), params)
    return {"success": True, "teachers": [serialize(t) for t in teachers], "pagination": pagination}


@router.patch("/api/admin/teachers/{teacher_id}")
def update_teacher(
    teacher_id: str,
    update: TeacherUpdateRequest,
    admin: Principal = Depends(require_permission("teachers")),
    db=Depends(get_db),
):
    teacher = find_by_id_or_custom_id(db["teacher"], teacher_id, "teacherId")
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found")
    changes = _changes(update)
    if changes:
        changes["updatedAt"] = utcnow()
        db["teacher"].update_one({"_id": teacher["_id"]}, {"$set": changes})
        logger.info("Teacher %s edited by admin %s", teacher["teacherId"], admin.id)
    return {"success": True, "teacher": serialize(db["teacher"].find_one({"_id": teacher["_id"]}))}


@router.get("/api/guardian/get-all")
def get_all_guardians(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    admin: Principal = Depends(require_permission("guardians")),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    guardians, pagination = paginate(db["guardian"], search_filter(search, SEARCH_FIELDS["guardian"]), params)
    return {"success": True, "guardians": [serialize(g) for g in guardians], "pagination": pagination}


@router.patch("/api/admin/guardians/{guardian_id}")
def update_guardian(
    guardian_id: str,
    update: GuardianUpdateRequest,
    admin: Principal = Depends(require_permission("guardians")),
    db=Depends(get_db),
):
    guardian = find_by_id_or_custom_id(db["guardian"], guardian_id, "guardianId")
    if not guardian:
        raise HTTPException(status_code=404, detail="Guardian not found")
    changes = _changes(update)
    if changes:
        changes["updatedAt"] = utcnow()
        db["guardian"].update_one({"_id": guardian["_id"]}, {"$set": changes})
        logger.info("Guardian %s edited by admin %s", guardian["guardianId"], admin.id)
    return {"success": True, "guardian": serialize(db["guardian"].find_one({"_id": guardian["_id"]}))}


# ----------------- Posts -----------------
@router.get("/api/admin/posts")
def get_all_posts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    admin: Principal = Depends(require_permission("posts")),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters(
        {"status": status} if status else {},
        search_filter(search, SEARCH_FIELDS["post"]),
    )
    posts, pagination = paginate(db["post"], query, params)
    return {"success": True, "posts": [serialize(p) for p in posts], "pagination": pagination}


@router.get("/api/admin/posts/{post_id}")
def get_post(post_id: str, admin: Principal = Depends(require_permission("posts")), db=Depends(get_db)):
    post = find_by_id_or_custom_id(db["post"], post_id, "postId")
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"success": True, "post": serialize(post)}


@router.patch("/api/admin/posts/{post_id}")
def edit_post(
    post_id: str,
    update: PostUpdateRequest,
    admin: Principal = Depends(require_permission("posts")),
    db=Depends(get_db),
):
    post = find_by_id_or_custom_id(db["post"], post_id, "postId")
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    changes = _changes(update)
    if changes:
        now = utcnow()
        changes.update({
            "updatedAt": now,
            "editedBy": "admin",
            "editedAt": now,
            "editedByUserId": admin.id,
            "editedByName": admin.record.get("name"),
        })
        db["post"].update_one({"_id": post["_id"]}, {"$set": changes})
    return {"success": True, "post": serialize(db["post"].find_one({"_id": post["_id"]}))}


@router.patch("/api/posts/status")
def update_post_status(
    req: PostStatusRequest,
    admin: Principal = Depends(require_permission("posts")),
    db=Depends(get_db),
):
    if not req.postId or not req.status:
        raise HTTPException(status_code=400, detail="Missing postId or status")
    if req.status not in POST_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status value")

    post = find_by_id_or_custom_id(db["post"], req.postId, "postId")
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    db["post"].update_one({"_id": post["_id"]}, {"$set": {"status": req.status, "updatedAt": utcnow()}})
    logger.info("Post %s status set to %s by admin %s", post["postId"], req.status, admin.id)
    return {"success": True, "postId": req.postId, "status": req.status}


# ----------------- Applications -----------------
@router.get("/api/admin/applications/all")
def get_all_applications(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    admin: Principal = Depends(require_permission("applications")),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters(
        {"status": status} if status else {},
        search_filter(search, SEARCH_FIELDS["application"]),
    )
    rows, pagination = paginate(db["application"], query, params, sort=[("appliedAt", -1), ("_id", -1)])
    return {"success": True, "applications": [serialize(r) for r in rows], "pagination": pagination}


@router.patch("/api/admin/applications/status")
def update_application_status(
    req: ApplicationStatusRequest,
    admin: Principal = Depends(require_permission("applications")),
    db=Depends(get_db),
):
    if not req.status:
        raise HTTPException(status_code=400, detail="Missing status")
    updated = applications.set_status(db, req.applicationId, req.status)
    return {"success": True, "application": serialize(updated)}


@router.get("/api/admin/withdrawal-requests")
def withdrawal_requests(admin: Principal = Depends(require_permission("applications")), db=Depends(get_db)):
    rows = db["application"].find({"status": "withdrawal-requested"}).sort("withdrawalRequestedAt", -1)
    return {"success": True, "requests": [serialize(r) for r in rows]}


@router.post("/api/admin/withdrawal-requests/approve")
def approve_withdrawal(
    req: ApplicationActionRequest,
    admin: Principal = Depends(require_permission("applications")),
    db=Depends(get_db),
):
    applications.approve_withdrawal(db, req.applicationId, admin.email or admin.id)
    return {"success": True}


@router.post("/api/admin/withdrawal-requests/decline")
def decline_withdrawal(
    req: ApplicationActionRequest,
    admin: Principal = Depends(require_permission("applications")),
    db=Depends(get_db),
):
    updated = applications.decline_withdrawal(db, req.applicationId, admin.email or admin.id)
    return {"success": True, "application": {"_id": str(updated["_id"]), "status": updated["status"]}}


# ----------------- Notifications -----------------
@router.get("/api/admin/notifications")
def notifications(
    status: Optional[str] = None,
    admin: Principal = Depends(require_permission("notifications")),
    db=Depends(get_db),
):
    query = {"status": status} if status else {}
    rows = list(db["adminnotification"].find(query).sort("createdAt", -1))
    return {
        "success": True,
        "notifications": [serialize(r) for r in rows],
        "unread": db["adminnotification"].count_documents({"read": False}),
    }


@router.patch("/api/admin/notifications/read")
def mark_notifications_read(
    req: NotificationReadRequest,
    admin: Principal = Depends(require_permission("notifications")),
    db=Depends(get_db),
):
    if req.all:
        query: Dict[str, Any] = {"read": False}
    else:
        ids = [oid for oid in (parse_object_id(i) for i in req.ids) if oid]
        if not ids:
            raise HTTPException(status_code=400, detail="Provide ids or all=true")
        query = {"_id": {"$in": ids}}
    result = db["adminnotification"].update_many(query, {"$set": {"read": True}})
    return {"success": True, "updated": result.modified_count}


# ----------------- Settings -----------------
@router.get("/api/admin/settings")
def get_settings(admin: Principal = Depends(require_permission("settings")), db=Depends(get_db)):
    doc = db["setting"].find_one({"key": SETTINGS_KEY})
    return {"success": True, "settings": doc["value"] if doc else {}}


@router.post("/api/admin/settings")
def save_settings(
    value: Any = Body(...),
    admin: Principal = Depends(require_permission("settings")),
    db=Depends(get_db),
):
    setting = Setting(key=SETTINGS_KEY, value=value)
    now = utcnow()
    db["setting"].update_one(
        {"key": setting.key},
        {"$set": {"value": setting.value, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
        upsert=True,
    )
    logger.info("Settings saved by admin %s", admin.id)
    return {"success": True}


# ----------------- Ads -----------------
@router.get("/api/ad/manage")
def list_ads(admin: Principal = Depends(require_permission("ads")), db=Depends(get_db)):
    return {"success": True, "ads": [serialize(a) for a in ads.list_ads(db)]}


@router.post("/api/ad/manage")
def create_ad(req: AdCreateRequest, admin: Principal = Depends(require_permission("ads")), db=Depends(get_db)):
    ad = ads.create_ad(db, req.model_dump())
    return {"success": True, "ad": serialize(ad)}


@router.patch("/api/ad/manage")
def update_ad(req: AdUpdateRequest, admin: Principal = Depends(require_permission("ads")), db=Depends(get_db)):
    changes = req.model_dump(exclude_unset=True, exclude={"id"})
    ad = ads.update_ad(db, req.id, changes)
    return {"success": True, "ad": serialize(ad)}


@router.delete("/api/ad/manage")
def delete_ad(req: AdDeleteRequest, admin: Principal = Depends(require_permission("ads")), db=Depends(get_db)):
    ads.delete_ad(db, req.id)
    return {"success": True}


@router.get("/api/ad/analytics")
def ad_analytics(
    adId: Optional[str] = None,
    days: int = Query(7, ge=1, le=365),
    admin: Principal = Depends(require_permission("ads")),
    db=Depends(get_db),
):
    return {"success": True, **serialize(ads.analytics(db, adId, days))}


@router.api_route("/api/ad/sync-status", methods=["GET", "POST"])
def sync_ad_status(admin: Principal = Depends(require_permission("ads")), db=Depends(get_db)):
    server_time = utcnow()
    changed = ads.sync_statuses(db, server_time)
    return {
        "success": True,
        "message": "Ad statuses synchronized successfully",
        "serverTime": server_time.isoformat(),
        "changed": changed,
        "statusCounts": ads.status_counts(db),
    }


# ----------------- Invoices -----------------
@router.get("/api/admin/invoices")
def list_invoices(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    postId: Optional[str] = None,
    admin: Principal = Depends(require_permission("invoices")),
    db=Depends(get_db),
):
    params = PageParams.from_query(page, limit)
    query = merge_filters(
        {"paymentStatus": status} if status else {},
        {"postId": postId} if postId else {},
        search_filter(search, SEARCH_FIELDS["invoice"]),
    )
    rows, pagination = paginate(db["invoice"], query, params)
    return {"success": True, "invoices": [serialize(r) for r in rows], "pagination": pagination}


@router.post("/api/admin/invoices")
def create_invoice(
    req: InvoiceCreateRequest,
    admin: Principal = Depends(require_permission("invoices")),
    db=Depends(get_db),
):
    if req.invoiceNumber:
        number = req.invoiceNumber.strip().upper()
        if db["invoice"].find_one({"invoiceNumber": number}, {"_id": 1}):
            raise HTTPException(status_code=400, detail="Invoice number already exists")
    else:
        number = invoices.generate_invoice_number(db)

    items, sub_total, tax_amount, grand_total = invoices.compute_totals(
        [i.model_dump() for i in req.items], req.taxPercentage,
    )
    invoice = Invoice(
        invoiceNumber=number,
        invoiceDate=req.invoiceDate or utcnow(),
        paymentDate=req.paymentDate,
        paymentStatus=req.paymentStatus,
        yourCompany=req.yourCompany or CompanyInfo(**COMPANY),
        billTo=req.billTo,
        shipTo=req.shipTo,
        items=items,
        subTotal=sub_total,
        taxPercentage=req.taxPercentage,
        taxAmount=tax_amount,
        grandTotal=grand_total,
        notes=req.notes,
        currency=req.currency,
        websiteUrl=WEBSITE_URL,
        postId=req.postId,
        createdBy=admin.id,
    )
    create_document("invoice", invoice, database=db)
    logger.info("Invoice %s created by admin %s", number, admin.id)
    return {"success": True, "invoice": serialize(db["invoice"].find_one({"invoiceNumber": number}))}


def _invoice_or_404(db, number: str) -> dict:
    invoice = db["invoice"].find_one({"invoiceNumber": number.upper()})
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/api/admin/invoices/{invoice_number}")
def get_invoice(invoice_number: str, admin: Principal = Depends(require_permission("invoices")), db=Depends(get_db)):
    return {"success": True, "invoice": serialize(_invoice_or_404(db, invoice_number))}


@router.get("/api/admin/invoices/{invoice_number}/pdf")
def invoice_pdf(
    invoice_number: str,
    template: int = 1,
    admin: Principal = Depends(require_permission("invoices")),
    db=Depends(get_db),
):
    invoice = _invoice_or_404(db, invoice_number)
    pdf = invoices.render_invoice_pdf(invoice, template)
    headers = {"Content-Disposition": f"attachment; filename=invoice_{invoice['invoiceNumber']}.pdf"}
    return StreamingResponse(io.BytesIO(pdf), media_type="application/pdf", headers=headers)

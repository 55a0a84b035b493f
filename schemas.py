"""
Database Schemas for the AOTF platform

Each Pydantic model below maps to a MongoDB collection (lowercase of class name).
Documents are validated against these schemas before they are persisted.
Field names are camelCase, matching the stored documents.
"""

from datetime import datetime
from typing import Optional, List, Any, Literal

from pydantic import BaseModel, Field, EmailStr

UserRole = Literal["teacher", "guardian", "freelancer", "client"]
PostStatus = Literal["open", "matched", "closed", "hold"]
ApplicationStatus = Literal["pending", "approved", "declined", "completed", "withdrawal-requested"]
AdStatus = Literal["scheduled", "active", "expired", "inactive"]
AdminRole = Literal["super_admin", "support_admin"]

POST_STATUSES = ("open", "matched", "closed", "hold")


class EmailStatus(BaseModel):
    bounced: bool = False
    bouncedAt: Optional[datetime] = None
    bounceReason: Optional[str] = None


class User(BaseModel):
    """
    Collection name: "user"
    Login identity shared by the tutorials and jobs apps
    """
    email: EmailStr = Field(..., description="Lowercased login email")
    password: str = Field(..., description="PBKDF2 password hash")
    name: str = Field("", description="Display name")
    role: Optional[UserRole] = Field(None, description="Chosen during onboarding")
    onboardingCompleted: bool = False
    isActive: bool = True
    emailStatus: EmailStatus = Field(default_factory=EmailStatus)


class Teacher(BaseModel):
    """
    Collection name: "teacher"
    Tutor profile, keyed by the human-readable teacherId (AOT-XXXXXXXX)
    """
    teacherId: str = Field(..., pattern=r"^AOT-[A-Z0-9]{8}$")
    userId: str
    name: str
    email: EmailStr
    phone: str
    location: str
    experience: Optional[str] = None
    qualifications: Optional[str] = None
    schoolBoard: Optional[str] = None
    subjectsTeaching: List[str] = Field(default_factory=list)
    teachingMode: Optional[str] = None
    bio: Optional[str] = None
    hourlyRate: Optional[str] = None
    availability: Optional[str] = None
    registrationFeeStatus: Literal["pending", "paid", "failed"] = "pending"
    paymentVerifiedAt: Optional[datetime] = None


class Guardian(BaseModel):
    """
    Collection name: "guardian"
    Parent/guardian profile, keyed by guardianId (AOG-XXXXX)
    """
    guardianId: str = Field(..., pattern=r"^AOG-[A-Z0-9]{5}$")
    userId: str
    name: str
    email: EmailStr
    phone: str
    location: str
    grade: Optional[str] = None
    subjectsOfInterest: List[str] = Field(default_factory=list)
    learningMode: Optional[str] = None


class Post(BaseModel):
    """
    Collection name: "post"
    A tutoring request (guardian) or project (client)
    """
    postId: str = Field(..., description="Human-readable id, P-XXXXXXXX")
    userId: str
    postedBy: Literal["guardian", "client"]
    guardianId: Optional[str] = None
    clientId: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    subject: str
    className: str
    board: Optional[Literal["CBSE", "ICSE", "WBBSE", "ISC", "WBCHS"]] = None
    location: Optional[str] = None
    monthlyBudget: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    status: PostStatus = "open"
    applicants: List[str] = Field(default_factory=list, description="Applicant ids")
    applications: List[str] = Field(default_factory=list, description="Application ids")


class Application(BaseModel):
    """
    Collection name: "application"
    Links an applicant (teacher or freelancer) to a post
    """
    postId: str
    teacherId: Optional[str] = None
    freelancerId: Optional[str] = None
    status: ApplicationStatus = "pending"
    appliedAt: datetime
    withdrawalRequestedAt: Optional[datetime] = None
    withdrawalRequestedBy: Optional[str] = None
    withdrawalNote: Optional[str] = Field(None, max_length=500)


class Ad(BaseModel):
    """
    Collection name: "ad"
    Banner ad; status is derived from startDate/endDate
    """
    title: str
    imageUrl: str
    link: str
    status: AdStatus = "active"
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    impressions: int = 0
    clicks: int = 0


class AdAnalytics(BaseModel):
    """
    Collection name: "adanalytics"
    One record per (ad, UTC day)
    """
    adId: str
    date: datetime
    impressions: int = 0
    clicks: int = 0


class AdminPermissions(BaseModel):
    dashboard: bool = True
    posts: bool = False
    payments: bool = False
    applications: bool = False
    guardians: bool = False
    teachers: bool = False
    ads: bool = False
    invoices: bool = False
    notifications: bool = False
    settings: bool = False


class Admin(BaseModel):
    """
    Collection name: "admin"
    Dashboard operator with a role and per-capability flags
    """
    email: EmailStr
    password: str
    name: str
    role: AdminRole = "support_admin"
    permissions: AdminPermissions = Field(default_factory=AdminPermissions)
    isActive: bool = True
    lastLogin: Optional[datetime] = None


class AdminNotification(BaseModel):
    """
    Collection name: "adminnotification"
    Mirrors a withdrawal request for the admin inbox
    """
    type: Literal["withdrawal-request", "withdrawal-approved", "withdrawal-declined"]
    applicationId: str
    teacherId: str
    teacherName: str
    teacherCustomId: str
    postId: str
    withdrawalNote: Optional[str] = Field(None, max_length=500)
    status: Literal["pending", "approved", "declined"] = "pending"
    requestedAt: datetime
    processedAt: Optional[datetime] = None
    processedBy: Optional[str] = None
    read: bool = False


class Setting(BaseModel):
    """
    Collection name: "setting"
    Key/value store; the admin settings live under a single fixed key
    """
    key: str
    value: Any = Field(default_factory=dict)


class CompanyInfo(BaseModel):
    name: str
    address: str
    phone: str


class InvoiceItem(BaseModel):
    name: str
    description: str = ""
    quantity: int = Field(1, ge=1)
    amount: float = Field(..., ge=0)
    total: float = 0


class Invoice(BaseModel):
    """
    Collection name: "invoice"
    Issued by admins; rendered to PDF on demand
    """
    invoiceNumber: str = Field(..., max_length=6)
    invoiceDate: datetime
    paymentDate: Optional[datetime] = None
    paymentStatus: Literal["paid", "unpaid"] = "unpaid"
    yourCompany: CompanyInfo
    billTo: CompanyInfo
    shipTo: Optional[CompanyInfo] = None
    items: List[InvoiceItem]
    subTotal: float
    taxPercentage: float = Field(0, ge=0)
    taxAmount: float
    grandTotal: float
    notes: str = ""
    currency: str = "INR"
    websiteUrl: str = ""
    postId: Optional[str] = None
    createdBy: Optional[str] = None


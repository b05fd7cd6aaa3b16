"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for the
routers; validation failures are reported as a field-level error list
before any business logic runs.
"""

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from .models import naive_utc

EMAIL_RE = re.compile(r"^\w+([.+-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,})+$")
PHONE_RE = re.compile(r"^[+]?[1-9]\d{0,15}$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")

UTCDateTime = Annotated[datetime, AfterValidator(naive_utc)]

UserType = Literal["student", "jobseeker", "employer", "admin"]
Role = Literal["user", "moderator", "admin", "super_admin"]
Permission = Literal["read", "write", "delete", "manage_users", "manage_courses", "manage_payments", "view_analytics"]


def _email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email")
    return value


def _strong_password(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters")
    if not PASSWORD_RE.match(value):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return value


def _plain(value):
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def sent_fields(data: BaseModel) -> dict:
    """Top-level fields the client sent, for partial writes.

    Nested models are dumped whole, defaults included, in JSON mode since
    they are stored in JSON columns.
    """
    return {name: _plain(getattr(data, name)) for name in data.model_fields_set}


# --- auth -----------------------------------------------------------------

class RegisterIn(BaseModel):
    """Payload for the public registration endpoint."""
    full_name: str = Field(min_length=2, max_length=100)
    email: str
    password: str
    phone: str
    user_type: Literal["student", "jobseeker", "employer"] = "student"

    @field_validator("full_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return _email(v)

    @field_validator("password")
    @classmethod
    def _check_password(cls, v: str) -> str:
        return _strong_password(v)

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, v: str) -> str:
        if not PHONE_RE.match(v):
            raise ValueError("Please provide a valid phone number")
        return v


class LoginIn(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return _email(v)


class PasswordResetIn(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return _email(v)


class NewPasswordIn(BaseModel):
    new_password: str = Field(min_length=6)


class PasswordChangeIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_password(cls, v: str) -> str:
        return _strong_password(v)


class RefreshIn(BaseModel):
    refresh_token: str


# --- users ----------------------------------------------------------------

class UserUpdate(BaseModel):
    """Profile fields a user may edit; admin-only fields are checked by the service."""
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = None
    avatar: Optional[str] = None
    date_of_birth: Optional[UTCDateTime] = None
    gender: Optional[Literal["male", "female", "other", "prefer-not-to-say"]] = None
    address: Optional[Dict[str, Any]] = None
    education: Optional[List[Dict[str, Any]]] = None
    experience: Optional[List[Dict[str, Any]]] = None
    skills: Optional[List[str]] = None
    resume: Optional[Dict[str, Any]] = None
    company: Optional[Dict[str, Any]] = None
    preferences: Optional[Dict[str, Any]] = None
    # admin only
    role: Optional[Role] = None
    permissions: Optional[List[Permission]] = None
    user_type: Optional[UserType] = None
    is_active: Optional[bool] = None
    is_blocked: Optional[bool] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PHONE_RE.match(v):
            raise ValueError("Please provide a valid phone number")
        return v


# --- courses --------------------------------------------------------------

class LessonIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: Literal["video", "text", "quiz", "assignment", "live_session"]
    content: Dict[str, Any] = Field(default_factory=dict)
    order: int
    is_preview: bool = False
    duration: Optional[int] = Field(default=None, ge=0)
    resources: List[Dict[str, Any]] = Field(default_factory=list)


class ModuleIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    order: int
    lessons: List[LessonIn] = Field(default_factory=list)


class QuizQuestionIn(BaseModel):
    question: str = Field(min_length=1)
    type: Literal["multiple_choice", "true_false", "short_answer"]
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: float = Field(default=1, ge=0)


class QuizIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    passing_score: int = Field(default=70, ge=0, le=100)
    questions: List[QuizQuestionIn] = Field(default_factory=list)
    module_id: Optional[str] = None
    is_required: bool = True


class AssignmentIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = None
    due_date: Optional[UTCDateTime] = None
    max_score: float = Field(default=100, gt=0)
    module_id: Optional[str] = None
    is_required: bool = True


class CertificateCriteriaIn(BaseModel):
    completion_percentage: int = Field(default=100, ge=1, le=100)
    minimum_quiz_score: int = Field(default=70, ge=0, le=100)
    required_assignments: int = Field(default=0, ge=0)


class CertificateIn(BaseModel):
    is_available: bool = True
    template: Optional[str] = None
    criteria: CertificateCriteriaIn = Field(default_factory=CertificateCriteriaIn)


Category = Literal[
    "web-development", "mobile-development", "data-science", "ai-ml",
    "cybersecurity", "devops", "ui-ux", "digital-marketing", "other",
]


class CourseBase(BaseModel):
    short_description: Optional[str] = Field(default=None, max_length=500)
    language: Optional[str] = None
    currency: Optional[Literal["INR", "USD", "EUR"]] = None
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    discount_valid_until: Optional[UTCDateTime] = None
    thumbnail: Optional[str] = None
    preview_video: Optional[Dict[str, Any]] = None
    modules: Optional[List[ModuleIn]] = None
    assignments: Optional[List[AssignmentIn]] = None
    quizzes: Optional[List[QuizIn]] = None
    prerequisites: Optional[List[int]] = None
    requirements: Optional[List[str]] = None
    what_you_will_learn: Optional[List[str]] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    is_active: Optional[bool] = None
    enrollment_limit: Optional[int] = Field(default=None, ge=1)
    enrollment_start_date: Optional[UTCDateTime] = None
    enrollment_end_date: Optional[UTCDateTime] = None
    course_start_date: Optional[UTCDateTime] = None
    course_end_date: Optional[UTCDateTime] = None
    seo: Optional[Dict[str, Any]] = None
    tags: Optional[List[Annotated[str, Field(min_length=1, max_length=50)]]] = None
    certificate: Optional[CertificateIn] = None


class CourseCreate(CourseBase):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=50, max_length=2000)
    category: Category
    level: Literal["beginner", "intermediate", "advanced"]
    duration_hours: int = Field(ge=1, le=1000)
    duration_weeks: int = Field(ge=1, le=52)
    pricing_type: Literal["free", "paid"]
    price_amount: float = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _paid_needs_price(self):
        if self.pricing_type == "paid" and self.price_amount < 1:
            raise ValueError("Price must be greater than 0 for paid courses")
        return self


class CourseUpdate(CourseBase):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=50, max_length=2000)
    category: Optional[Category] = None
    level: Optional[Literal["beginner", "intermediate", "advanced"]] = None
    duration_hours: Optional[int] = Field(default=None, ge=1, le=1000)
    duration_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    pricing_type: Optional[Literal["free", "paid"]] = None
    price_amount: Optional[float] = Field(default=None, ge=0)


class ProgressIn(BaseModel):
    lesson_id: str
    time_spent: int = Field(default=0, ge=0)


class QuizAnswerIn(BaseModel):
    question_index: int = Field(ge=0)
    answer: Optional[str] = None


class QuizAttemptIn(BaseModel):
    answers: List[QuizAnswerIn]
    time_spent: int = Field(default=0, ge=0)


class SubmissionIn(BaseModel):
    text_submission: Optional[str] = None
    files: List[Dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self):
        if not self.text_submission and not self.files:
            raise ValueError("A submission needs text or at least one file")
        return self


class GradeIn(BaseModel):
    score: float = Field(ge=0)
    feedback: Optional[str] = None


class FeedbackIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: Optional[str] = Field(default=None, max_length=2000)
    would_recommend: Optional[bool] = None


class EnrollmentStatusIn(BaseModel):
    status: Literal["active", "suspended"]


# --- jobs -----------------------------------------------------------------

class ScreeningQuestionIn(BaseModel):
    id: Optional[str] = None
    question: str = Field(min_length=1)
    type: Literal["text", "multiple_choice", "yes_no", "number"]
    options: List[str] = Field(default_factory=list)
    is_required: bool = True
    order: Optional[int] = None


class JobBase(BaseModel):
    company: Optional[Dict[str, Any]] = None
    location_state: Optional[str] = None
    location_country: Optional[str] = None
    is_remote: Optional[bool] = None
    skills_preferred: Optional[List[str]] = None
    technologies: Optional[List[str]] = None
    education: Optional[Dict[str, Any]] = None
    salary_min: Optional[float] = Field(default=None, ge=0)
    salary_max: Optional[float] = Field(default=None, ge=0)
    salary_currency: Optional[str] = None
    salary_period: Optional[Literal["hourly", "monthly", "yearly"]] = None
    salary_negotiable: Optional[bool] = None
    benefits: Optional[List[str]] = None
    responsibilities: Optional[List[str]] = None
    requirements: Optional[List[str]] = None
    nice_to_have: Optional[List[str]] = None
    application_deadline: Optional[UTCDateTime] = None
    start_date: Optional[UTCDateTime] = None
    application_process: Optional[Dict[str, Any]] = None
    status: Optional[Literal["draft", "active", "paused", "closed", "filled"]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_urgent: Optional[bool] = None
    max_applications: Optional[int] = Field(default=None, ge=1)
    seo: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    internal_notes: Optional[str] = None
    screening_questions: Optional[List[ScreeningQuestionIn]] = None

    @model_validator(mode="after")
    def _salary_range(self):
        if self.salary_min is not None and self.salary_max is not None and self.salary_max < self.salary_min:
            raise ValueError("Maximum salary must be greater than or equal to minimum salary")
        return self


JobCategory = Literal["engineering", "design", "marketing", "sales", "hr", "finance", "operations", "other"]
JobType = Literal["full-time", "part-time", "contract", "internship", "freelance"]
WorkMode = Literal["remote", "on-site", "hybrid"]
ExperienceLevel = Literal["entry", "mid", "senior", "lead", "executive"]


class JobCreate(JobBase):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=100, max_length=5000)
    department: str = Field(min_length=2, max_length=100)
    category: JobCategory
    job_type: JobType
    work_mode: WorkMode
    location_city: str = Field(min_length=2, max_length=100)
    experience_min: int = Field(ge=0, le=50)
    experience_max: int = Field(ge=0, le=50)
    experience_level: ExperienceLevel
    skills_required: List[str] = Field(min_length=1)

    @model_validator(mode="after")
    def _experience_range(self):
        if self.experience_max < self.experience_min:
            raise ValueError("Maximum experience must be greater than or equal to minimum experience")
        return self


class JobUpdate(JobBase):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=100, max_length=5000)
    department: Optional[str] = Field(default=None, min_length=2, max_length=100)
    category: Optional[JobCategory] = None
    job_type: Optional[JobType] = None
    work_mode: Optional[WorkMode] = None
    location_city: Optional[str] = Field(default=None, min_length=2, max_length=100)
    experience_min: Optional[int] = Field(default=None, ge=0, le=50)
    experience_max: Optional[int] = Field(default=None, ge=0, le=50)
    experience_level: Optional[ExperienceLevel] = None
    skills_required: Optional[List[str]] = None


# --- applications ---------------------------------------------------------

class ScreeningResponseIn(BaseModel):
    question_id: str
    answer: str


class ApplicationCreate(BaseModel):
    job_id: int
    cover_letter: Optional[str] = Field(default=None, max_length=2000)
    documents: Dict[str, Any] = Field(default_factory=dict)
    screening_responses: List[ScreeningResponseIn] = Field(default_factory=list)
    source: Literal["website", "referral", "job_board", "social_media", "campus", "walk_in"] = "website"
    referred_by: Optional[int] = None


class WithdrawalIn(BaseModel):
    reason: Optional[str] = None
    can_reapply: bool = True


class OfferIn(BaseModel):
    is_offered: bool = True
    salary: Optional[Dict[str, Any]] = None
    benefits: Optional[List[str]] = None
    start_date: Optional[UTCDateTime] = None
    joining_bonus: Optional[float] = None
    other_terms: Optional[str] = None
    expiry_date: Optional[UTCDateTime] = None


class EvaluationIn(BaseModel):
    technical_score: Optional[float] = Field(default=None, ge=0, le=100)
    experience_score: Optional[float] = Field(default=None, ge=0, le=100)
    education_score: Optional[float] = Field(default=None, ge=0, le=100)
    skills_match: Optional[float] = Field(default=None, ge=0, le=100)
    cultural_fit_score: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class ApplicationUpdate(BaseModel):
    """Union of every updatable field; the service enforces who may send which."""
    cover_letter: Optional[str] = Field(default=None, max_length=2000)
    withdrawal: Optional[WithdrawalIn] = None
    status: Optional[Literal[
        "submitted", "under_review", "screening", "shortlisted", "interview_scheduled",
        "interviewed", "technical_round", "final_round", "selected", "rejected", "withdrawn", "on_hold",
    ]] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    evaluation: Optional[EvaluationIn] = None
    offer: Optional[OfferIn] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None
    internal_notes: Optional[str] = None
    tags: Optional[List[str]] = None


class OfferResponseIn(BaseModel):
    status: Literal["accepted", "rejected", "negotiating"]
    counter_offer: Optional[Dict[str, Any]] = None
    rejection_reason: Optional[str] = None


class InterviewIn(BaseModel):
    type: Literal["phone", "video", "in_person", "technical", "hr", "final"]
    scheduled_date: UTCDateTime
    duration: Optional[int] = Field(default=None, ge=1)
    interviewer_id: Optional[int] = None
    interviewer_name: Optional[str] = None
    interviewer_email: Optional[str] = None
    meeting_link: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class InterviewFeedbackIn(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=10)
    technical_skills: Optional[int] = None
    communication_skills: Optional[int] = None
    problem_solving: Optional[int] = None
    cultural_fit: Optional[int] = None
    comments: Optional[str] = None
    recommendation: Optional[Literal["strong_hire", "hire", "no_hire", "strong_no_hire"]] = None


class InterviewUpdate(BaseModel):
    status: Optional[Literal["completed", "cancelled", "rescheduled", "no_show"]] = None
    scheduled_date: Optional[UTCDateTime] = None
    feedback: Optional[InterviewFeedbackIn] = None
    notes: Optional[str] = None
    recording_url: Optional[str] = None


class CommunicationIn(BaseModel):
    type: Literal["email", "phone", "message", "note"]
    direction: Literal["inbound", "outbound"]
    subject: Optional[str] = None
    content: str = Field(min_length=1)


# --- payments -------------------------------------------------------------

class PaymentCreate(BaseModel):
    payment_type: Literal["course_enrollment", "certification", "premium_subscription", "job_posting", "other"]
    entity_type: Literal["Course", "Job", "Subscription"]
    entity_id: int
    amount_original: Optional[float] = Field(default=None, ge=0)
    amount_discount: float = Field(default=0, ge=0)
    amount_tax: float = Field(default=0, ge=0)
    currency: Optional[str] = None
    payment_method: Literal["credit_card", "debit_card", "net_banking", "upi", "wallet", "bank_transfer", "cash"]
    payment_gateway: Literal["stripe", "razorpay", "payu", "paypal", "manual"]
    billing_details: Dict[str, Any] = Field(default_factory=dict)
    discount: Dict[str, Any] = Field(default_factory=dict)


class PaymentError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None
    gateway_error: Optional[str] = None


class PaymentStatusIn(BaseModel):
    status: Literal["processing", "completed", "failed", "cancelled"]
    gateway_transaction_id: Optional[str] = None
    error: Optional[PaymentError] = None


class RefundIn(BaseModel):
    amount: float = Field(gt=0)
    reason: Optional[str] = None
    notes: Optional[str] = None


class RefundStatusIn(BaseModel):
    status: Literal["processing", "completed", "failed"]
    gateway_refund_id: Optional[str] = None
    notes: Optional[str] = None


# --- notifications --------------------------------------------------------

class ChannelsIn(BaseModel):
    in_app: bool = True
    email: bool = False
    sms: bool = False
    push: bool = False


class NotificationCreate(BaseModel):
    recipient_id: Optional[int] = None
    recipient_type: Literal["user", "all"] = "user"
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    type: Literal[
        "course_enrollment", "course_completion", "assignment_due", "quiz_available",
        "certificate_issued", "job_application", "interview_scheduled", "application_status",
        "payment_success", "payment_failed", "system_announcement", "reminder", "welcome", "other",
    ] = "system_announcement"
    category: Literal["info", "success", "warning", "error", "reminder"] = "info"
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    channels: ChannelsIn = Field(default_factory=ChannelsIn)
    action: Dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[UTCDateTime] = None

    @model_validator(mode="after")
    def _recipient(self):
        if self.recipient_type == "user" and self.recipient_id is None:
            raise ValueError("recipient_id is required when recipient_type is 'user'")
        return self

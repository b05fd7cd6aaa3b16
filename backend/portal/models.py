"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Aggregate roots (User, Course, Enrollment, Job, Application, Payment,
Notification) keep their small nested value objects in JSON columns;
append-only ledgers (status history, interviews, lesson completions,
quiz attempts, submissions, refunds) are child tables ordered by id.

All timestamps are naive UTC datetimes (see `utcnow`) stored in plain
`DateTime` columns; every column declares that type explicitly through
`_stamp` so that SQLModel never swaps in its timezone-aware column type.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (what SQLite hands back)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise an aware datetime to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


USER_TYPES = ("student", "jobseeker", "employer", "admin")
ROLES = ("user", "moderator", "admin", "super_admin")
ADMIN_ROLES = ("admin", "super_admin")
PERMISSIONS = ("read", "write", "delete", "manage_users", "manage_courses", "manage_payments", "view_analytics")

COURSE_STATUSES = ("draft", "published", "archived")
COURSE_CATEGORIES = (
    "web-development", "mobile-development", "data-science", "ai-ml",
    "cybersecurity", "devops", "ui-ux", "digital-marketing", "other",
)
COURSE_LEVELS = ("beginner", "intermediate", "advanced")
LESSON_TYPES = ("video", "text", "quiz", "assignment", "live_session")
CURRENCIES = ("INR", "USD", "EUR")

ENROLLMENT_STATUSES = ("active", "completed", "dropped", "suspended")
QUIZ_PASS_PERCENTAGE = 70

JOB_STATUSES = ("draft", "active", "paused", "closed", "filled")
JOB_CATEGORIES = ("engineering", "design", "marketing", "sales", "hr", "finance", "operations", "other")
JOB_TYPES = ("full-time", "part-time", "contract", "internship", "freelance")
WORK_MODES = ("remote", "on-site", "hybrid")
EXPERIENCE_LEVELS = ("entry", "mid", "senior", "lead", "executive")

APPLICATION_PIPELINE = (
    "submitted", "under_review", "screening", "shortlisted", "interview_scheduled",
    "interviewed", "technical_round", "final_round", "selected",
)
APPLICATION_STATUSES = APPLICATION_PIPELINE + ("rejected", "withdrawn", "on_hold")
APPLICATION_TERMINAL = ("selected", "rejected", "withdrawn")
INTERVIEW_TYPES = ("phone", "video", "in_person", "technical", "hr", "final")
INTERVIEW_STATUSES = ("scheduled", "completed", "cancelled", "rescheduled", "no_show")
OFFER_RESPONSES = ("pending", "accepted", "rejected", "negotiating")
PRIORITIES = ("low", "medium", "high", "urgent")

PAYMENT_STATUSES = ("pending", "processing", "completed", "failed", "cancelled", "refunded", "partially_refunded")
PAYMENT_TYPES = ("course_enrollment", "certification", "premium_subscription", "job_posting", "other")
PAYMENT_METHODS = ("credit_card", "debit_card", "net_banking", "upi", "wallet", "bank_transfer", "cash")
PAYMENT_GATEWAYS = ("stripe", "razorpay", "payu", "paypal", "manual")
REFUND_STATUSES = ("pending", "processing", "completed", "failed")

NOTIFICATION_TYPES = (
    "course_enrollment", "course_completion", "assignment_due", "quiz_available",
    "certificate_issued", "job_application", "interview_scheduled", "application_status",
    "payment_success", "payment_failed", "system_announcement", "reminder", "welcome", "other",
)
NOTIFICATION_CHANNELS = ("in_app", "email", "sms", "push")


def _json(default_factory=dict):
    return Field(default_factory=default_factory, sa_column=Column(JSON))


def _stamp(now: bool = False, index: bool = False):
    if now:
        return Field(default_factory=utcnow, index=index, sa_type=DateTime)
    return Field(default=None, index=index, sa_type=DateTime)


class User(SQLModel, table=True):
    """A registered account.

    `password_hash` and the verification/reset token hashes are never
    serialized; see `serializers.public_user`.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    phone: str
    user_type: str = Field(default="student", index=True)
    role: str = Field(default="user")
    permissions: List[str] = _json(list)

    avatar: Optional[str] = None
    date_of_birth: Optional[datetime] = _stamp()
    gender: Optional[str] = None
    address: dict = _json()
    education: List[dict] = _json(list)
    experience: List[dict] = _json(list)
    skills: List[str] = _json(list)
    resume: dict = _json()
    company: dict = _json()

    is_email_verified: bool = False
    is_active: bool = Field(default=True, index=True)
    is_blocked: bool = False
    last_login: Optional[datetime] = _stamp()
    login_attempts: int = 0
    lock_until: Optional[datetime] = _stamp()

    email_verification_token: Optional[str] = Field(default=None, index=True)
    email_verification_expire: Optional[datetime] = _stamp()
    reset_password_token: Optional[str] = Field(default=None, index=True)
    reset_password_expire: Optional[datetime] = _stamp()

    preferences: dict = _json()
    registration_source: str = "website"
    referred_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = _stamp(now=True, index=True)
    updated_at: datetime = _stamp(now=True)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        return bool(self.lock_until and self.lock_until > (now or utcnow()))

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class Course(SQLModel, table=True):
    """A catalog course with nested modules, lessons, quizzes and assignments."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    description: str
    short_description: Optional[str] = None
    category: str = Field(index=True)
    level: str = Field(index=True)
    duration_hours: int
    duration_weeks: int
    language: str = "English"

    pricing_type: str = Field(default="free", index=True)
    price_amount: float = 0
    currency: str = "INR"
    discount_percentage: Optional[int] = None
    discount_valid_until: Optional[datetime] = _stamp()

    thumbnail: Optional[str] = None
    preview_video: dict = _json()
    modules: List[dict] = _json(list)
    assignments: List[dict] = _json(list)
    quizzes: List[dict] = _json(list)
    prerequisites: List[int] = _json(list)
    requirements: List[str] = _json(list)
    what_you_will_learn: List[str] = _json(list)
    instructors: List[dict] = _json(list)

    status: str = Field(default="draft", index=True)
    is_active: bool = True
    enrollment_limit: Optional[int] = None
    enrollment_start_date: Optional[datetime] = _stamp()
    enrollment_end_date: Optional[datetime] = _stamp()
    course_start_date: Optional[datetime] = _stamp()
    course_end_date: Optional[datetime] = _stamp()

    total_enrollments: int = 0
    completion_rate: float = 0
    average_rating: float = 0
    total_ratings: int = 0

    seo: dict = _json()
    tags: List[str] = _json(list)
    certificate: dict = _json()
    created_at: datetime = _stamp(now=True, index=True)
    updated_at: datetime = _stamp(now=True)

    @property
    def total_lessons(self) -> int:
        return sum(len(m.get("lessons") or []) for m in self.modules or [])

    @property
    def total_duration(self) -> int:
        return sum(
            (lesson.get("duration") or 0)
            for m in self.modules or []
            for lesson in m.get("lessons") or []
        )

    @property
    def instructor_ids(self) -> List[int]:
        return [i.get("user_id") for i in self.instructors or [] if i.get("user_id") is not None]

    @property
    def completion_threshold(self) -> int:
        criteria = (self.certificate or {}).get("criteria") or {}
        return criteria.get("completion_percentage") or 100

    def lesson_position(self, lesson_id: str):
        """Return `(module_index, lesson_index)` for `lesson_id` or `None`."""
        for mi, module in enumerate(self.modules or []):
            for li, lesson in enumerate(module.get("lessons") or []):
                if lesson.get("id") == lesson_id:
                    return mi, li
        return None

    def find_quiz(self, quiz_id: str) -> Optional[dict]:
        return next((q for q in self.quizzes or [] if q.get("id") == quiz_id), None)

    def find_assignment(self, assignment_id: str) -> Optional[dict]:
        return next((a for a in self.assignments or [] if a.get("id") == assignment_id), None)


class Enrollment(SQLModel, table=True):
    """One student's participation in one course."""
    __table_args__ = (UniqueConstraint("student_id", "course_id", name="uq_enrollment_student_course"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    enrollment_date: datetime = _stamp(now=True, index=True)
    status: str = Field(default="active", index=True)

    completed_modules: List[dict] = _json(list)
    current_module_index: int = 0
    current_lesson_index: int = 0
    total_time_spent: int = 0
    completion_percentage: int = 0
    last_accessed_at: datetime = _stamp(now=True)

    payment: dict = _json()

    completed_at: Optional[datetime] = _stamp()
    certificate_issued: bool = False
    certificate_id: Optional[str] = None
    certificate_issued_at: Optional[datetime] = _stamp()
    final_grade: Optional[str] = None
    overall_score: Optional[float] = None

    feedback_rating: Optional[int] = None
    feedback_review: Optional[str] = None
    feedback_date: Optional[datetime] = _stamp()
    would_recommend: Optional[bool] = None

    notes: List[dict] = _json(list)
    bookmarks: List[dict] = _json(list)
    settings: dict = _json()
    created_at: datetime = _stamp(now=True)
    updated_at: datetime = _stamp(now=True)

    completed_lessons: List["LessonCompletion"] = Relationship(
        back_populates="enrollment",
        sa_relationship_kwargs={"order_by": "LessonCompletion.id", "cascade": "all, delete-orphan"},
    )
    quiz_progress: List["QuizProgress"] = Relationship(
        back_populates="enrollment",
        sa_relationship_kwargs={"order_by": "QuizProgress.id", "cascade": "all, delete-orphan"},
    )
    submissions: List["AssignmentSubmission"] = Relationship(
        back_populates="enrollment",
        sa_relationship_kwargs={"order_by": "AssignmentSubmission.id", "cascade": "all, delete-orphan"},
    )


class LessonCompletion(SQLModel, table=True):
    """A lesson the student has finished; unique per enrollment."""
    __table_args__ = (UniqueConstraint("enrollment_id", "lesson_id", name="uq_completion_lesson"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    enrollment_id: int = Field(foreign_key="enrollment.id", index=True)
    lesson_id: str
    completed_at: datetime = _stamp(now=True)
    time_spent: int = 0
    enrollment: Optional[Enrollment] = Relationship(back_populates="completed_lessons")


class QuizProgress(SQLModel, table=True):
    """Best result and pass flag for one quiz inside an enrollment."""
    __table_args__ = (UniqueConstraint("enrollment_id", "quiz_id", name="uq_quiz_progress"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    enrollment_id: int = Field(foreign_key="enrollment.id", index=True)
    quiz_id: str
    best_score: float = 0
    best_percentage: float = 0
    total_attempts: int = 0
    passed: bool = False
    enrollment: Optional[Enrollment] = Relationship(back_populates="quiz_progress")
    attempts: List["QuizAttempt"] = Relationship(
        back_populates="progress",
        sa_relationship_kwargs={"order_by": "QuizAttempt.attempt_number", "cascade": "all, delete-orphan"},
    )


class QuizAttempt(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_progress_id: int = Field(foreign_key="quizprogress.id", index=True)
    attempt_number: int
    started_at: Optional[datetime] = _stamp()
    submitted_at: datetime = _stamp(now=True)
    answers: List[dict] = _json(list)
    score: float = 0
    percentage: float = 0
    passed: bool = False
    time_spent: int = 0
    progress: Optional[QuizProgress] = Relationship(back_populates="attempts")


class AssignmentSubmission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    enrollment_id: int = Field(foreign_key="enrollment.id", index=True)
    assignment_id: str = Field(index=True)
    submitted_at: datetime = _stamp(now=True)
    files: List[dict] = _json(list)
    text_submission: Optional[str] = None
    score: Optional[float] = None
    feedback: Optional[str] = None
    graded_at: Optional[datetime] = _stamp()
    graded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    enrollment: Optional[Enrollment] = Relationship(back_populates="submissions")


class Job(SQLModel, table=True):
    """A job posting owned by exactly one employer."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True, unique=True)
    description: str
    employer_id: int = Field(foreign_key="user.id", index=True)
    company: dict = _json()
    department: str
    category: str = Field(index=True)
    job_type: str = Field(index=True)
    work_mode: str

    location_city: str = Field(index=True)
    location_state: Optional[str] = None
    location_country: str = "India"
    is_remote: bool = False

    experience_min: int = 0
    experience_max: int = 0
    experience_level: str = Field(index=True)
    skills_required: List[str] = _json(list)
    skills_preferred: List[str] = _json(list)
    technologies: List[str] = _json(list)
    education: dict = _json()

    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_currency: str = "INR"
    salary_period: str = "yearly"
    salary_negotiable: bool = True

    benefits: List[str] = _json(list)
    responsibilities: List[str] = _json(list)
    requirements: List[str] = _json(list)
    nice_to_have: List[str] = _json(list)
    application_deadline: Optional[datetime] = _stamp(index=True)
    start_date: Optional[datetime] = _stamp()
    application_process: dict = _json()

    status: str = Field(default="draft", index=True)
    is_active: bool = True
    is_featured: bool = False
    is_urgent: bool = False
    max_applications: Optional[int] = None
    current_applications: int = 0

    stats_views: int = 0
    stats_applications: int = 0
    stats_shortlisted: int = 0
    stats_interviewed: int = 0
    stats_hired: int = 0

    seo: dict = _json()
    tags: List[str] = _json(list)
    internal_notes: Optional[str] = None
    screening_questions: List[dict] = _json(list)
    created_at: datetime = _stamp(now=True, index=True)
    updated_at: datetime = _stamp(now=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return bool(self.application_deadline and (now or utcnow()) > self.application_deadline)

    def closed_reason(self, now: Optional[datetime] = None) -> Optional[str]:
        """Return why the job refuses applications, or `None` when open."""
        if self.status != "active" or not self.is_active:
            return "This job is not accepting applications"
        if self.is_expired(now):
            return "The application deadline for this job has passed"
        if self.max_applications and self.current_applications >= self.max_applications:
            return "Application limit reached for this job"
        return None


class Application(SQLModel, table=True):
    """An applicant's pipeline record for one job."""
    __table_args__ = (UniqueConstraint("applicant_id", "job_id", name="uq_application_applicant_job"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    applicant_id: int = Field(foreign_key="user.id", index=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    employer_id: int = Field(foreign_key="user.id", index=True)
    application_date: datetime = _stamp(now=True, index=True)
    status: str = Field(default="submitted", index=True)

    cover_letter: Optional[str] = None
    documents: dict = _json()
    screening_responses: List[dict] = _json(list)
    assessments: List[dict] = _json(list)
    communications: List[dict] = _json(list)
    offer: dict = _json()
    evaluation: dict = _json()

    source: str = "website"
    referred_by: Optional[int] = Field(default=None, foreign_key="user.id")
    internal_notes: Optional[str] = None
    tags: List[str] = _json(list)
    priority: str = "medium"

    is_withdrawn: bool = False
    withdrawn_at: Optional[datetime] = _stamp()
    withdrawal_reason: Optional[str] = None
    can_reapply: bool = True
    created_at: datetime = _stamp(now=True)
    updated_at: datetime = _stamp(now=True)

    status_history: List["ApplicationStatusChange"] = Relationship(
        back_populates="application",
        sa_relationship_kwargs={"order_by": "ApplicationStatusChange.id", "cascade": "all, delete-orphan"},
    )
    interviews: List["Interview"] = Relationship(
        back_populates="application",
        sa_relationship_kwargs={"order_by": "Interview.id", "cascade": "all, delete-orphan"},
    )


class ApplicationStatusChange(SQLModel, table=True):
    """Append-only audit entry for an application status transition."""
    id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="application.id", index=True)
    status: str
    changed_at: datetime = _stamp(now=True)
    changed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    reason: Optional[str] = None
    notes: Optional[str] = None
    application: Optional[Application] = Relationship(back_populates="status_history")


class Interview(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="application.id", index=True)
    type: str
    scheduled_date: Optional[datetime] = _stamp()
    duration: Optional[int] = None
    interviewer_id: Optional[int] = Field(default=None, foreign_key="user.id")
    interviewer_name: Optional[str] = None
    interviewer_email: Optional[str] = None
    meeting_link: Optional[str] = None
    location: Optional[str] = None
    status: str = "scheduled"
    feedback: dict = _json()
    notes: Optional[str] = None
    recording_url: Optional[str] = None
    created_at: datetime = _stamp(now=True)
    application: Optional[Application] = Relationship(back_populates="interviews")


class Payment(SQLModel, table=True):
    """A single transaction attempt with its refund sub-ledger."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    transaction_id: str = Field(index=True, unique=True)
    order_id: str = Field(index=True, unique=True)
    invoice_number: str = Field(index=True, unique=True)
    invoice_date: datetime = _stamp(now=True)
    invoice_items: List[dict] = _json(list)

    payment_type: str = Field(index=True)
    entity_type: str
    entity_id: int = Field(index=True)

    amount_original: float
    amount_discount: float = 0
    amount_tax: float = 0
    amount_final: float
    currency: str = "INR"

    payment_method: str
    payment_gateway: str
    gateway_transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None

    status: str = Field(default="pending", index=True)
    initiated_at: datetime = _stamp(now=True)
    completed_at: Optional[datetime] = _stamp()
    failed_at: Optional[datetime] = _stamp()

    billing_details: dict = _json()
    discount: dict = _json()
    tax: dict = _json()
    failure: dict = _json()
    extra: dict = _json()
    internal_notes: Optional[str] = None
    created_at: datetime = _stamp(now=True, index=True)
    updated_at: datetime = _stamp(now=True)

    refunds: List["Refund"] = Relationship(
        back_populates="payment",
        sa_relationship_kwargs={"order_by": "Refund.id", "cascade": "all, delete-orphan"},
    )

    @property
    def total_refunded(self) -> float:
        return sum(r.amount for r in self.refunds if r.status == "completed")

    @property
    def net_amount(self) -> float:
        return self.amount_final - self.total_refunded


class Refund(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    payment_id: int = Field(foreign_key="payment.id", index=True)
    refund_id: str = Field(index=True, unique=True)
    amount: float
    reason: Optional[str] = None
    status: str = "pending"
    requested_at: datetime = _stamp(now=True)
    processed_at: Optional[datetime] = _stamp()
    processed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    gateway_refund_id: Optional[str] = None
    notes: Optional[str] = None
    payment: Optional[Payment] = Relationship(back_populates="refunds")


class Notification(SQLModel, table=True):
    """An event record fanned out over one or more delivery channels."""
    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_id: int = Field(foreign_key="user.id", index=True)
    recipient_type: str = "user"
    title: str
    message: str
    type: str = Field(index=True)
    category: str = "info"
    priority: str = "medium"
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    status: str = Field(default="pending", index=True)
    is_read: bool = Field(default=False, index=True)
    read_at: Optional[datetime] = _stamp()
    channels: dict = _json()
    action: dict = _json()
    scheduled_for: Optional[datetime] = _stamp()
    expires_at: Optional[datetime] = _stamp()
    sender_id: Optional[int] = Field(default=None, foreign_key="user.id")
    sender_type: str = "system"
    extra: dict = _json()
    delivery_attempts: List[dict] = _json(list)
    batch_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = _stamp(now=True, index=True)

    @property
    def delivery_status(self) -> str:
        delivered = any((c or {}).get("sent") for c in (self.channels or {}).values())
        return "delivered" if delivered else "pending"


class StoredFile(SQLModel, table=True):
    """Metadata for an uploaded document kept under `UPLOAD_DIR`."""
    id: str = Field(primary_key=True)
    owner_id: int = Field(foreign_key="user.id", index=True)
    filename: str
    content_type: str
    size: int
    path: str
    created_at: datetime = _stamp(now=True)


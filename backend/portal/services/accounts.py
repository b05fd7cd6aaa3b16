"""Account services: registration, login, token lifecycle and user admin."""

import logging
from datetime import timedelta
from sqlmodel import Session

from .. import auth, models, repositories
from ..config import settings
from ..errors import Conflict, Forbidden, InvalidArgument, InvalidToken, NotFound, Unauthenticated
from ..policies import authorize
from ..utils import email_templates
from ..utils.mailer import send_email
from ..utils.pagination import PageParams, paginate, resolve_sort
from .notifications import NotificationService

logger = logging.getLogger("portal.auth")

MAX_LOGIN_ATTEMPTS = 5
LOCK_TIME = timedelta(hours=2)
VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(minutes=10)

INVALID_CREDENTIALS = "Invalid credentials"
PASSWORD_RESET_MESSAGE = "If an account with that email exists, a password reset link has been sent."

USER_SORTS = {
    "created_at": models.User.created_at,
    "full_name": models.User.full_name,
    "email": models.User.email,
    "last_login": models.User.last_login,
}
ADMIN_ONLY_FIELDS = {"role", "permissions", "user_type", "is_active", "is_blocked"}


class AuthService:
    """Authentication related operations (register, login, tokens, resets)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, data) -> models.User:
        """Create an unverified user and email the verification link."""
        if self.user_repo.get_by_email(data.email):
            raise Conflict("Email is already registered")
        raw, hashed = auth.new_one_shot_token()
        user = models.User(
            full_name=data.full_name,
            email=data.email,
            password_hash=auth.hash_password(data.password),
            phone=data.phone,
            user_type=data.user_type,
            email_verification_token=hashed,
            email_verification_expire=models.utcnow() + VERIFICATION_TTL,
        )
        self.user_repo.save(user)
        url = f"{settings.FRONTEND_URL}/verify-email/{raw}"
        subject, html = email_templates.email_verification(user.full_name, url)
        send_email(user.email, subject, html)
        logger.info("registered user %s (%s)", user.id, user.user_type)
        return user

    def login(self, email: str, password: str) -> dict:
        """Verify credentials and return `{token, refresh_token, user}`.

        A locked account is refused before the password is looked at. Account
        state messages are only revealed once the password has matched.
        """
        user = self.user_repo.get_by_email(email)
        if user is None:
            logger.info("login failed: unknown email")
            raise Unauthenticated(INVALID_CREDENTIALS)
        now = models.utcnow()
        if user.is_locked(now):
            # attempts while locked still count but never extend the lock
            user.login_attempts += 1
            self.user_repo.save(user)
            logger.warning("login refused for locked user %s", user.id)
            raise Unauthenticated(auth.LOCKED_MESSAGE)
        if not auth.verify_password(password, user.password_hash):
            self._register_failure(user, now)
            raise Unauthenticated(INVALID_CREDENTIALS)
        if not user.is_active:
            raise Unauthenticated("User account is deactivated")
        if user.is_blocked:
            raise Unauthenticated("User account is blocked")
        if not user.is_email_verified:
            raise Unauthenticated("Please verify your email before logging in")
        user.login_attempts = 0
        user.lock_until = None
        user.last_login = now
        self.user_repo.save(user)
        return {
            "token": auth.create_access_token(user),
            "refresh_token": auth.create_refresh_token(user),
            "user": user,
        }

    def _register_failure(self, user: models.User, now) -> None:
        if user.lock_until is not None and user.lock_until <= now:
            user.login_attempts = 1
            user.lock_until = None
        else:
            user.login_attempts += 1
            if user.login_attempts >= MAX_LOGIN_ATTEMPTS:
                user.lock_until = now + LOCK_TIME
                logger.warning("user %s locked after %d failed logins", user.id, user.login_attempts)
        self.user_repo.save(user)
        logger.info("login failed for user %s (attempt %d)", user.id, user.login_attempts)

    def refresh(self, refresh_token: str) -> dict:
        user = auth.resolve_identity(self.session, refresh_token, token_type="refresh")
        return {"token": auth.create_access_token(user)}

    def request_password_reset(self, email: str) -> str:
        user = self.user_repo.get_by_email(email)
        if user is not None:
            raw, hashed = auth.new_one_shot_token()
            user.reset_password_token = hashed
            user.reset_password_expire = models.utcnow() + RESET_TTL
            self.user_repo.save(user)
            subject, html = email_templates.password_reset(user.full_name, f"{settings.FRONTEND_URL}/reset-password/{raw}")
            send_email(user.email, subject, html)
        return PASSWORD_RESET_MESSAGE

    def verify_email(self, token: str) -> models.User:
        user = self.user_repo.get_by_verification_hash(auth.hash_token(token), models.utcnow())
        if user is None:
            raise InvalidToken("Invalid or expired verification token")
        user.is_email_verified = True
        user.email_verification_token = None
        user.email_verification_expire = None
        self.user_repo.save(user)
        subject, html = email_templates.welcome(user.full_name, user.user_type)
        send_email(user.email, subject, html)
        NotificationService(self.session).create_and_send(
            user.id,
            "Welcome aboard!",
            "Your email has been verified. Explore courses and jobs to get started.",
            type="welcome",
            category="success",
        )
        return user

    def reset_password(self, token: str, new_password: str) -> models.User:
        user = self.user_repo.get_by_reset_hash(auth.hash_token(token), models.utcnow())
        if user is None:
            raise InvalidToken("Invalid or expired reset token")
        user.password_hash = auth.hash_password(new_password)
        user.reset_password_token = None
        user.reset_password_expire = None
        user.login_attempts = 0
        user.lock_until = None
        self.user_repo.save(user)
        logger.info("password reset for user %s", user.id)
        return user

    def change_password(self, user: models.User, current_password: str, new_password: str) -> None:
        if not auth.verify_password(current_password, user.password_hash):
            raise InvalidArgument("Current password is incorrect")
        user.password_hash = auth.hash_password(new_password)
        self.user_repo.save(user)


class UserService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.UserRepository(session)

    def list(self, params: PageParams, user_type=None, role=None, is_active=None, search=None):
        stmt = self.repo.query(user_type=user_type, role=role, is_active=is_active, search=search)
        order = resolve_sort(params.sort, USER_SORTS) or [models.User.created_at.desc()]
        return paginate(self.session, stmt, params, order)

    def get(self, actor: models.User, user_id: int) -> models.User:
        user = self.repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        authorize(actor, "read", "user", user)
        return user

    def update(self, actor: models.User, user_id: int, data) -> models.User:
        user = self.repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        authorize(actor, "update", "user", user)
        fields = data.model_dump(exclude_unset=True)
        restricted = ADMIN_ONLY_FIELDS & set(fields)
        if restricted and not actor.is_admin:
            raise Forbidden(f"Not allowed to update fields: {', '.join(sorted(restricted))}")
        if fields.get("role") == "super_admin" and actor.role != "super_admin":
            raise Forbidden("Only a super admin can grant the super_admin role")
        for key, value in fields.items():
            setattr(user, key, value)
        return self.repo.save(user)

    def unlock(self, user_id: int) -> models.User:
        user = self.repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        user.login_attempts = 0
        user.lock_until = None
        return self.repo.save(user)

    def deactivate(self, actor: models.User, user_id: int) -> models.User:
        user = self.repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.id == actor.id:
            raise InvalidArgument("You cannot deactivate your own account")
        user.is_active = False
        logger.info("user %s deactivated by %s", user.id, actor.id)
        return self.repo.save(user)
"""Registration, login, token refresh and password/email token routes."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..responses import envelope
from ..schemas import LoginIn, NewPasswordIn, PasswordChangeIn, PasswordResetIn, RefreshIn, RegisterIn
from ..serializers import public_user
from ..services import AuthService

router = APIRouter()


@router.post("/register", status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    AuthService(db).register(payload)
    return envelope(message="Registration successful! Please check your email to verify your account.")


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_session)):
    result = AuthService(db).login(payload.email, payload.password)
    return envelope(
        token=result["token"],
        refresh_token=result["refresh_token"],
        user=public_user(result["user"]),
    )


@router.post("/refresh")
def refresh(payload: RefreshIn, db: Session = Depends(get_session)):
    return envelope(**AuthService(db).refresh(payload.refresh_token))


@router.get("/me")
def me(user: models.User = Depends(get_current_user)):
    return envelope(public_user(user))


@router.post("/password-reset")
def password_reset(payload: PasswordResetIn, db: Session = Depends(get_session)):
    return envelope(message=AuthService(db).request_password_reset(payload.email))


@router.get("/verify-email/{token}")
def verify_email(token: str, db: Session = Depends(get_session)):
    AuthService(db).verify_email(token)
    return envelope(message="Email verified successfully. You can now log in.")


@router.post("/reset-password/{token}")
def reset_password(token: str, payload: NewPasswordIn, db: Session = Depends(get_session)):
    AuthService(db).reset_password(token, payload.new_password)
    return envelope(message="Password has been reset successfully.")


@router.put("/password")
def change_password(payload: PasswordChangeIn, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    AuthService(db).change_password(user, payload.current_password, payload.new_password)
    return envelope(message="Password updated successfully.")

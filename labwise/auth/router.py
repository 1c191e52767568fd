import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import Settings
from ..db import get_db
from ..deps import get_settings, get_transport
from ..logging import structlog
from ..models.models import User
from ..schemas.activity import (
    ActionType,
    LoginDetails,
    PasswordResetDetails,
    SystemErrorDetails,
)
from ..schemas.auth import (
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    TokenResponse,
    UserResponse,
)
from ..services.audit import append_activity
from ..services.mailer import MailTransport
from ..services.time_rules import utcnow
from .security import (
    create_access_token,
    create_password_reset_token,
    decode_token,
    get_current_user,
    get_password_hash,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        append_activity(
            db,
            email,
            ActionType.SYSTEM_ERROR,
            "Intento de inicio de sesión fallido",
            SystemErrorDetails(error="invalid credentials", context={"email": email}),
        )
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access = create_access_token(str(user.id), roles=[user.role])
    user.last_login = utcnow()
    append_activity(
        db,
        user.name,
        ActionType.USER_LOGIN,
        f"{user.name} inició sesión",
        LoginDetails(user_id=str(user.id), email=user.email),
        commit=False,
    )
    db.commit()
    return TokenResponse(access_token=access)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/password-reset")
def request_password_reset(
    req: PasswordResetRequest,
    db: Session = Depends(get_db),
    transport: MailTransport = Depends(get_transport),
    app_settings: Settings = Depends(get_settings),
):
    """Always answers the same way so callers cannot probe which e-mails exist."""
    email = req.email.lower()
    user = db.query(User).filter(User.email == email).first()
    append_activity(
        db,
        email,
        ActionType.PASSWORD_RESET_REQUEST,
        f"Solicitud de restablecimiento de contraseña para {email}",
        PasswordResetDetails(email=email, user_found=user is not None),
    )
    if user is not None and user.is_active:
        token = create_password_reset_token(str(user.id))
        link = f"{app_settings.public_base_url}/reset-password?token={token}"
        result = transport.send(
            user.email,
            "Restablecer contraseña - LabWise",
            f"<p>Hola {user.name},</p><p>Para restablecer su contraseña ingrese a: "
            f'<a href="{link}">{link}</a></p>',
        )
        if not result.ok:
            structlog.get_logger().warning("password_reset_email_failed", error=str(result.error))
    return {"status": "ok"}


@router.post("/password-reset/confirm")
def confirm_password_reset(req: PasswordResetConfirm, db: Session = Depends(get_db)):
    payload = decode_token(req.token)
    if payload.get("type") != "password_reset":
        raise HTTPException(status_code=400, detail="Invalid reset token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid reset token")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=400, detail="Invalid reset token")
    user.password_hash = get_password_hash(req.password)
    user.updated_at = utcnow()
    db.commit()
    return {"status": "ok"}

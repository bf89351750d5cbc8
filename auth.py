"""
Registration, login, OTP verification, password reset and session refresh.

Account lifecycle: registered accounts start inactive and are activated by the
first successful OTP verification. Inactive accounts can neither log in nor
refresh. Each user holds at most one refresh token at a time; only its hash is
stored, and every refresh rotates it.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response, status

from config import IS_PRODUCTION, OTP_TTL_MINUTES, REFRESH_COOKIE_NAME, REFRESH_TOKEN_TTL
from database import Database, as_naive_utc, get_db, object_id, utcnow
from errors import BadRequest, InternalError, MailError, NotFound, Unauthorized
from mail import MailSender, get_mailer
from schemas import (
    EmailRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    Role,
    VerifyOtpRequest,
)
from security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    generate_otp,
    get_current_user,
    hash_secret,
    peek_subject,
    verify_password,
    verify_secret,
)
from users import create_user, find_user, find_user_by_email, sanitize_user, update_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_SESSION = "Session expired or invalid token"
INACTIVE_ACCOUNT = "Account is inactive. Please verify your account via OTP first."
FORGOT_PASSWORD_MESSAGE = "If the email exists, an OTP has been sent to your email."


class AuthService:
    def __init__(self, database: Database, mailer: MailSender):
        self.db = database
        self.mailer = mailer

    def register(self, payload: RegisterRequest) -> dict:
        if payload.role is not None:
            raise BadRequest("Role cannot be specified during registration")
        data = payload.model_dump(exclude={"role"})
        data.update(role=Role.USER.value, is_active=False)
        user = create_user(self.db, data)
        logger.info("Registered user %s", user["email"])
        return {
            "message": "Account created. Please request an OTP to verify your account.",
            "user": sanitize_user(user),
        }

    def _issue_tokens(self, user: dict) -> dict:
        access_token = create_access_token(user)
        refresh_token = create_refresh_token(user)
        update_user(self.db, user["_id"], {"hashed_refresh_token": hash_secret(refresh_token)})
        return {"access_token": access_token, "refresh_token": refresh_token}

    def login(self, email: str, password: str) -> dict:
        user = find_user_by_email(self.db, email)
        if not user:
            raise Unauthorized(INVALID_CREDENTIALS)
        if not user.get("is_active"):
            raise Unauthorized(INACTIVE_ACCOUNT)
        if not verify_password(password, user.get("hashed_password")):
            raise Unauthorized(INVALID_CREDENTIALS)
        tokens = self._issue_tokens(user)
        logger.info("User %s logged in", user["_id"])
        return {"user": sanitize_user(user), **tokens}

    def refresh_tokens(self, user_id: str, refresh_token: str) -> dict:
        user = find_user(self.db, user_id)
        if not user or not user.get("hashed_refresh_token"):
            raise Unauthorized(INVALID_SESSION)
        try:
            claims = decode_refresh_token(refresh_token)
        except Unauthorized:
            raise Unauthorized(INVALID_SESSION)
        if claims.get("sub") != str(user["_id"]):
            raise Unauthorized(INVALID_SESSION)
        if not verify_secret(refresh_token, user["hashed_refresh_token"]):
            logger.warning("Rejected stale refresh token for user %s", user_id)
            raise Unauthorized(INVALID_SESSION)
        if not user.get("is_active"):
            raise Unauthorized(INACTIVE_ACCOUNT)
        return self._issue_tokens(user)

    def logout(self, user_id) -> dict:
        self.db["user"].update_one(
            {"_id": object_id(str(user_id), "User")},
            {"$set": {"hashed_refresh_token": None, "updated_at": utcnow()}},
        )
        return {"message": "Logged out successfully"}

    def _issue_otp(self, user: dict) -> str:
        otp_code = generate_otp()
        update_user(self.db, user["_id"], {
            "otp_code": hash_secret(otp_code),
            "otp_expires": utcnow() + timedelta(minutes=OTP_TTL_MINUTES),
        })
        return otp_code

    def send_otp(self, email: str) -> dict:
        user = find_user_by_email(self.db, email)
        if not user:
            raise NotFound("User with this email not found")
        otp_code = self._issue_otp(user)
        try:
            self.mailer.send_otp(email, otp_code)
        except MailError:
            logger.exception("Email service failed to send OTP")
            raise InternalError("Email service failed to send OTP")
        logger.info("OTP sent to user %s", user["_id"])
        return {"message": "OTP sent successfully. Please check your email."}

    def forgot_password(self, email: str) -> dict:
        # Same answer whether or not the account exists.
        user = find_user_by_email(self.db, email)
        if not user:
            return {"message": FORGOT_PASSWORD_MESSAGE}
        otp_code = self._issue_otp(user)
        try:
            self.mailer.send_password_reset_otp(email, otp_code)
        except MailError:
            logger.exception("Email service failed to send password reset OTP")
            raise InternalError("Email service failed to send OTP")
        return {"message": FORGOT_PASSWORD_MESSAGE}

    @staticmethod
    def _check_otp(user: dict, otp_code: str) -> None:
        if not user.get("otp_code"):
            raise BadRequest("No OTP code found for this user. Please request a new OTP.")
        expires = user.get("otp_expires")
        if expires and as_naive_utc(expires) < utcnow():
            raise BadRequest("OTP has expired. Please request a new OTP.")
        if not verify_secret(otp_code, user["otp_code"]):
            raise BadRequest("Invalid OTP code. Please try again.")

    def verify_otp(self, email: str, otp_code: str) -> dict:
        user = find_user_by_email(self.db, email)
        if not user:
            raise NotFound("User with this email not found")
        self._check_otp(user, otp_code)
        user = update_user(self.db, user["_id"], {"is_active": True, "otp_code": None, "otp_expires": None})
        return {
            "message": "Account verified successfully. You can now log in.",
            "user": sanitize_user(user),
        }

    def reset_password(self, email: str, otp_code: str, new_password: str) -> dict:
        user = find_user_by_email(self.db, email)
        if not user:
            raise NotFound("User with this email not found")
        self._check_otp(user, otp_code)
        update_user(self.db, user["_id"], {
            "password": new_password,
            "is_active": True,
            "otp_code": None,
            "otp_expires": None,
        })
        return {"message": "Password reset successfully"}

    def update_profile(self, user: dict, payload: ProfileUpdate) -> dict:
        return sanitize_user(update_user(self.db, user["_id"], payload.model_dump(exclude_unset=True)))


def get_auth_service(database: Database = Depends(get_db), mail: MailSender = Depends(get_mailer)) -> AuthService:
    return AuthService(database, mail)


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=int(REFRESH_TOKEN_TTL.total_seconds()),
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="none" if IS_PRODUCTION else "lax",
    )


# Routes
@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    return service.register(payload)


@router.post("/login")
def login(payload: LoginRequest, response: Response, service: AuthService = Depends(get_auth_service)):
    result = service.login(payload.email, payload.password)
    set_refresh_cookie(response, result["refresh_token"])
    return {"user": result["user"], "access_token": result["access_token"]}


@router.post("/send-otp")
def send_otp(payload: EmailRequest, service: AuthService = Depends(get_auth_service)):
    return service.send_otp(payload.email)


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpRequest, service: AuthService = Depends(get_auth_service)):
    return service.verify_otp(payload.email, payload.otp_code)


@router.post("/forgot-password")
def forgot_password(payload: EmailRequest, service: AuthService = Depends(get_auth_service)):
    return service.forgot_password(payload.email)


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)):
    return service.reset_password(payload.email, payload.otp_code, payload.new_password)


@router.post("/refresh")
def refresh(
    response: Response,
    payload: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    service: AuthService = Depends(get_auth_service),
):
    refresh_token = (payload.refresh_token if payload else None) or refresh_cookie
    if not refresh_token:
        raise Unauthorized("Refresh token not provided")
    user_id = peek_subject(refresh_token)
    tokens = service.refresh_tokens(user_id, refresh_token)
    set_refresh_cookie(response, tokens["refresh_token"])
    return {"access_token": tokens["access_token"]}


@router.post("/logout")
def logout(
    response: Response,
    current_user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    result = service.logout(current_user["_id"])
    response.delete_cookie(REFRESH_COOKIE_NAME)
    return result


@router.get("/profile")
def get_profile(current_user: dict = Depends(get_current_user)):
    return sanitize_user(current_user)


@router.patch("/profile")
def update_profile(
    payload: ProfileUpdate,
    current_user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    return service.update_profile(current_user, payload)

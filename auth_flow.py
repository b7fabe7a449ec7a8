"""Account lifecycle: registration, OTP verification, logins, password reset.

Accounts move ``Unregistered -> PendingVerification -> Verified``; a verified
account may additionally hold an open password reset window. OTP and reset
token fields are cleared as soon as they are consumed or found expired.
"""
import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta

from passlib.context import CryptContext

from errors import (
    ValidationError, DuplicateAccountError, NotFound, Expired, Mismatch,
    InvalidCredentials, NotVerified, AlreadyVerified, InvalidOrExpiredToken,
)
from models import ROLES, EXPLANATION_STYLES
from sessions import Identity

logger = logging.getLogger("uvicorn.error")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_RE = re.compile(r"^[\w\-.]+@([\w-]+\.)+[\w-]{2,4}$")
OTP_TTL = timedelta(minutes=10)
RESET_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 6

OTP_LOGIN_SENT = "If your account exists, an OTP has been sent."
RESET_LINK_SENT = "If an account with that email exists, a password reset link has been sent."


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email) -> str:
    return (email or "").strip().lower()


def validate_username(username) -> str:
    username = (username or "").strip()
    if len(username) < 3:
        raise ValidationError("Username must be at least 3 characters long")
    if len(username) > 30:
        raise ValidationError("Username cannot exceed 30 characters")
    return username


def validate_password(password):
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 6 characters long")


class AuthService:
    def __init__(self, store, mailer, clock=datetime.utcnow, base_url="http://localhost:8000"):
        self.store = store
        self.mailer = mailer
        self.clock = clock
        self.base_url = base_url.rstrip("/")

    def _issue_otp(self, user, subject, text):
        otp = generate_otp()
        self.store.set_otp(user.id, otp, self.clock() + OTP_TTL)
        self.mailer.send(user.email, subject, text.format(otp=otp))

    def _consume_otp(self, email, otp, mark_verified=False):
        user = self.store.get_user_by_email(normalize_email(email))
        if not user or not user.otp:
            raise NotFound("Verification failed. Please request a new OTP.")
        if self.clock() > user.otp_expires:
            self.store.clear_otp(user.id)
            raise Expired()
        if not hmac.compare_digest(user.otp, (otp or "").strip()):
            raise Mismatch()
        return self.store.clear_otp(user.id, mark_verified=mark_verified)

    # --- REGISTRATION ---
    def register(self, username, email, password, role, field_of_work, goal,
                 avatar=None, avatar_content_type=None):
        if not all([username, email, password, role, field_of_work, goal]):
            raise ValidationError("Please fill in all fields")

        email = normalize_email(email)
        if not EMAIL_RE.match(email):
            raise ValidationError("Please enter a valid email address")
        username = validate_username(username)
        validate_password(password)
        if role not in ROLES:
            raise ValidationError("Invalid role. Role must be learner, educator, or admin.")
        field_of_work, goal = field_of_work.strip(), goal.strip()
        if not field_of_work or not goal:
            raise ValidationError("Please fill in all fields")

        existing = self.store.get_user_by_email(email)
        if existing and existing.is_verified:
            raise DuplicateAccountError()
        if existing:
            self._issue_otp(existing, "Verify Your Email Address",
                            "Here is your new verification code: {otp}.")
            return existing

        if self.store.get_user_by_username(username):
            raise DuplicateAccountError("That username is already taken.")

        otp = generate_otp()
        user = self.store.create_user(
            username=username,
            email=email,
            password_hash=pwd_context.hash(password),
            role=role,
            field_of_work=field_of_work,
            goal=goal,
            otp=otp,
            otp_expires=self.clock() + OTP_TTL,
            avatar=avatar,
            avatar_content_type=avatar_content_type if avatar is not None else None,
        )
        if user is None:
            # lost a uniqueness race with a concurrent registration
            raise DuplicateAccountError("That username or email is already taken.")
        self.mailer.send(user.email, "Verify Your Email Address", f"Your verification code is {otp}.")
        return user

    def verify_otp(self, email, otp):
        return self._consume_otp(email, otp, mark_verified=True)

    def resend_otp(self, email):
        user = self.store.get_user_by_email(normalize_email(email))
        if not user:
            raise NotFound("User not found.")
        if user.is_verified:
            raise AlreadyVerified()
        self._issue_otp(user, "New Verification Code", "Your new verification code is {otp}.")
        return "A new OTP has been sent to your email."

    # --- LOGIN ---
    def login_with_password(self, email, password) -> Identity:
        user = self.store.get_user_by_email(normalize_email(email))
        if not user or not pwd_context.verify(password or "", user.password_hash):
            raise InvalidCredentials()
        if not user.is_verified:
            raise NotVerified()
        return Identity.from_user(user)

    def request_otp_login(self, email) -> str:
        user = self.store.get_user_by_email(normalize_email(email))
        if user and user.is_verified:
            try:
                self._issue_otp(user, "Your Login Code", "Your login code is {otp}.")
            except Exception:
                # the reply must not differ for existing accounts
                logger.exception("Failed to send login OTP")
        return OTP_LOGIN_SENT

    def login_with_otp(self, email, otp) -> Identity:
        user = self.store.get_user_by_email(normalize_email(email))
        if user and not user.is_verified:
            raise NotFound("Login failed. Please request a new OTP.")
        try:
            user = self._consume_otp(email, otp)
        except NotFound:
            raise NotFound("Login failed. Please request a new OTP.")
        return Identity.from_user(user)

    # --- PASSWORD RESET ---
    def request_password_reset(self, email) -> str:
        user = self.store.get_user_by_email(normalize_email(email))
        if user:
            token = secrets.token_hex(20)
            self.store.set_reset_token(user.id, hash_token(token), self.clock() + RESET_TTL)
            try:
                self.mailer.send(
                    user.email,
                    "Password Reset Request",
                    f"Click this link to reset your password: {self.base_url}/reset/{token}",
                )
            except Exception:
                logger.exception("Failed to send password reset mail")
        return RESET_LINK_SENT

    def check_reset_token(self, token):
        user = self.store.get_user_by_reset_token(hash_token((token or "").strip()))
        if not user or not user.reset_expires:
            raise InvalidOrExpiredToken()
        if self.clock() >= user.reset_expires:
            self.store.clear_reset_token(user.id)
            raise InvalidOrExpiredToken()
        return user

    def confirm_password_reset(self, token, password, confirm_password):
        user = self.check_reset_token(token)
        if password != confirm_password:
            raise Mismatch("Passwords do not match.")
        validate_password(password)
        self.store.reset_password(user.id, pwd_context.hash(password))

    # --- PROFILE ---
    def update_profile(self, user_id, username, language, explanation_style,
                       avatar=None, avatar_content_type=None) -> Identity:
        username = validate_username(username)
        language = (language or "").strip()
        if not language:
            raise ValidationError("Please choose a preferred language.")
        if explanation_style not in EXPLANATION_STYLES:
            raise ValidationError("Invalid explanation style.")

        owner = self.store.get_user_by_username(username)
        if owner and owner.id != user_id:
            raise DuplicateAccountError("That username is already taken.")

        user = self.store.update_profile(user_id, username, language, explanation_style,
                                         avatar=avatar, avatar_content_type=avatar_content_type)
        if user is None:
            raise NotFound("User not found.")
        return Identity.from_user(user)

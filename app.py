import logging
import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from fastapi import FastAPI, Depends, Request, Form, File, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

import config
from db import Base, engine
from memory_sqlalchemy import MemoryStore
from mailer import SmtpMailer
from assistant import GeminiAssistant
from auth_flow import AuthService, OTP_LOGIN_SENT
from conversations import ConversationService
from sessions import Identity, SessionManager
from errors import (
    AppError, ValidationError, NotVerified, Unauthorized, NotFound,
)

BASE_DIR = Path(__file__).resolve().parent
IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}
IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}

LOGIN_STATUS_MESSAGES = {
    "verified": "Your email has been verified. Please log in.",
    "password_reset_success": "Your password has been reset. Please log in.",
}

logger = logging.getLogger("uvicorn.error")

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Coatcard AI")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

store = MemoryStore()
mailer = SmtpMailer()


# --- MODELS ---
class EmailRequest(BaseModel):
    email: str = ""


class SendMessageRequest(BaseModel):
    chatId: Optional[str] = None
    history: Any = None
    firstMessage: Optional[str] = None


# --- DEPENDENCIES ---
def get_store():
    return store


def get_mailer():
    return mailer


def get_clock():
    return datetime.utcnow


@lru_cache(maxsize=1)
def get_assistant():
    return GeminiAssistant()


def get_auth(s=Depends(get_store), m=Depends(get_mailer), clock=Depends(get_clock)):
    return AuthService(s, m, clock=clock, base_url=config.BASE_URL)


def get_sessions(s=Depends(get_store), clock=Depends(get_clock)):
    return SessionManager(s, clock=clock)


def get_conversations(s=Depends(get_store), a=Depends(get_assistant)):
    return ConversationService(s, a)


def current_identity(request: Request, sessions: SessionManager = Depends(get_sessions)) -> Optional[Identity]:
    return sessions.load(request.cookies.get(config.SESSION_COOKIE_NAME))


def require_identity(identity: Optional[Identity] = Depends(current_identity)) -> Identity:
    if identity is None:
        raise Unauthorized()
    return identity


# --- HELPERS ---
def render(request: Request, name: str, status_code: int = 200, **context):
    context.setdefault("msg", None)
    context.setdefault("user", None)
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def redirect(url: str):
    return RedirectResponse(url, status_code=303)


def start_session(sessions: SessionManager, identity: Identity, url: str = "/chat"):
    response = redirect(url)
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=sessions.create(identity),
        max_age=sessions.max_age,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
    )
    return response


def read_avatar(upload: Optional[UploadFile]):
    """Return ``(bytes, content_type)`` for an uploaded image, or ``(None, None)``."""
    if upload is None or not upload.filename:
        return None, None
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in IMAGE_EXTENSIONS or upload.content_type not in IMAGE_TYPES:
        raise ValidationError("File Upload Error: Images Only!")
    data = upload.file.read(config.MAX_AVATAR_BYTES + 1)
    if len(data) > config.MAX_AVATAR_BYTES:
        raise ValidationError("File Upload Error: File too large")
    if not data:
        return None, None
    return data, upload.content_type


def serialize_chat(conv) -> dict:
    return {
        "id": conv.id,
        "userId": conv.user_id,
        "title": conv.title,
        "history": conv.history or [],
        "createdAt": conv.created_at.isoformat() if conv.created_at else None,
        "updatedAt": conv.updated_at.isoformat() if conv.updated_at else None,
    }


# --- ERROR HANDLERS ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if request.url.path.startswith("/api"):
        return JSONResponse(status_code=500, content={"error": "Something went wrong."})
    return render(request, "error.html", status_code=500, msg="Something went wrong. Please try again.")


# --- PAGES ---
@app.get("/")
def index(request: Request, identity: Optional[Identity] = Depends(current_identity)):
    if identity:
        return redirect("/chat")
    return render(request, "index.html")


@app.get("/login")
def login_page(request: Request, status: str = ""):
    return render(request, "login.html", msg=LOGIN_STATUS_MESSAGES.get(status), email="")


@app.get("/register")
def register_page(request: Request):
    return render(request, "register.html", form={})


@app.get("/verify")
def verify_page(request: Request, email: str = ""):
    return render(request, "verify.html", email=email)


@app.get("/otp-login")
def otp_login_page(request: Request, email: str = "", status: str = ""):
    return render(request, "otp_login.html", email=email, msg=OTP_LOGIN_SENT if status == "sent" else None)


@app.get("/forgot")
def forgot_page(request: Request):
    return render(request, "forgot.html")


@app.get("/reset/{token}")
def reset_page(request: Request, token: str, auth: AuthService = Depends(get_auth)):
    try:
        auth.check_reset_token(token)
    except AppError as e:
        return render(request, "forgot.html", msg=e.message)
    return render(request, "reset.html", token=token)


@app.get("/chat")
def chat_page(request: Request, identity: Optional[Identity] = Depends(current_identity)):
    if identity is None:
        return redirect("/login")
    return render(request, "chat.html", user=identity)


# --- AUTH ENDPOINTS ---
@app.post("/auth/register")
def register(
    request: Request,
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    role: str = Form(""),
    fieldOfWork: str = Form(""),
    goal: str = Form(""),
    profileImage: Optional[UploadFile] = File(None),
    auth: AuthService = Depends(get_auth),
):
    form = {"username": username, "email": email, "role": role, "fieldOfWork": fieldOfWork, "goal": goal}
    try:
        avatar, content_type = read_avatar(profileImage)
        user = auth.register(username, email, password, role, fieldOfWork, goal,
                             avatar=avatar, avatar_content_type=content_type)
    except AppError as e:
        return render(request, "register.html", status_code=e.status_code, msg=e.message, form=form)
    except Exception:
        logger.exception("Error while registering user %s", email)
        return render(request, "register.html", status_code=500,
                      msg="Something went wrong. Please try again.", form=form)
    return redirect(f"/verify?email={quote(user.email)}")


@app.post("/auth/verify")
def verify(request: Request, email: str = Form(""), otp: str = Form(""),
           auth: AuthService = Depends(get_auth)):
    try:
        auth.verify_otp(email, otp)
    except AppError as e:
        return render(request, "verify.html", status_code=e.status_code, email=email, msg=e.message)
    return redirect("/login?status=verified")


@app.post("/auth/resend-otp")
def resend_otp(data: EmailRequest, auth: AuthService = Depends(get_auth)):
    try:
        message = auth.resend_otp(data.email)
    except AppError as e:
        return JSONResponse(status_code=e.status_code, content={"message": e.message})
    except Exception:
        logger.exception("Error while resending OTP")
        return JSONResponse(status_code=500, content={"message": "An error occurred while resending OTP."})
    return {"message": message}


@app.post("/auth/login")
def login(request: Request, email: str = Form(""), password: str = Form(""),
          auth: AuthService = Depends(get_auth), sessions: SessionManager = Depends(get_sessions)):
    try:
        identity = auth.login_with_password(email, password)
    except NotVerified as e:
        return render(request, "login.html", status_code=e.status_code, msg=e.message,
                      email=email, show_verify_link=True)
    except AppError as e:
        return render(request, "login.html", status_code=e.status_code, msg=e.message, email=email)
    return start_session(sessions, identity)


@app.post("/auth/request-otp-login")
def request_otp_login(email: str = Form(""), auth: AuthService = Depends(get_auth)):
    auth.request_otp_login(email)
    return redirect(f"/otp-login?email={quote(email.strip())}&status=sent")


@app.post("/auth/otp-login")
def otp_login(request: Request, email: str = Form(""), otp: str = Form(""),
              auth: AuthService = Depends(get_auth), sessions: SessionManager = Depends(get_sessions)):
    try:
        identity = auth.login_with_otp(email, otp)
    except AppError as e:
        return render(request, "otp_login.html", status_code=e.status_code, email=email, msg=e.message)
    return start_session(sessions, identity)


@app.get("/auth/logout")
def logout(request: Request, sessions: SessionManager = Depends(get_sessions)):
    sessions.destroy(request.cookies.get(config.SESSION_COOKIE_NAME))
    response = redirect("/login")
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return response


@app.post("/auth/forgot")
def forgot(request: Request, email: str = Form(""), auth: AuthService = Depends(get_auth)):
    return render(request, "forgot.html", msg=auth.request_password_reset(email))


@app.post("/auth/reset/{token}")
def reset(request: Request, token: str, password: str = Form(""), confirmPassword: str = Form(""),
          auth: AuthService = Depends(get_auth)):
    try:
        auth.confirm_password_reset(token, password, confirmPassword)
    except AppError as e:
        return render(request, "reset.html", status_code=e.status_code, token=token, msg=e.message)
    return redirect("/login?status=password_reset_success")


# --- CHAT ENDPOINTS ---
@app.get("/api/chats")
def list_chats(identity: Identity = Depends(require_identity),
               chats: ConversationService = Depends(get_conversations)):
    return [serialize_chat(c) for c in chats.list_conversations(identity.id)]


@app.get("/api/chat/{cid}")
def get_chat(cid: str, identity: Identity = Depends(require_identity),
             chats: ConversationService = Depends(get_conversations)):
    return serialize_chat(chats.get_conversation(identity.id, cid))


@app.post("/api/chat/new", status_code=201)
def new_chat(identity: Identity = Depends(require_identity),
             chats: ConversationService = Depends(get_conversations)):
    return serialize_chat(chats.create_conversation(identity.id))


@app.post("/api/chat")
def send_message(req: SendMessageRequest, identity: Identity = Depends(require_identity),
                 chats: ConversationService = Depends(get_conversations)):
    candidates, conv = chats.send_message(identity.id, req.chatId, req.history, req.firstMessage)
    return {
        "botResponse": {"candidates": [{"content": c} for c in candidates]},
        "updatedChat": serialize_chat(conv),
    }


@app.post("/api/chat/clear/{cid}")
def clear_chat(cid: str, identity: Identity = Depends(require_identity),
               chats: ConversationService = Depends(get_conversations)):
    conv = chats.clear_conversation(identity.id, cid)
    return {"message": "Chat history cleared.", "chat": serialize_chat(conv)}


@app.delete("/api/chat/{cid}")
def delete_chat(cid: str, identity: Identity = Depends(require_identity),
                chats: ConversationService = Depends(get_conversations)):
    chats.delete_conversation(identity.id, cid)
    return {"message": "Chat deleted successfully."}


# --- PROFILE ---
@app.get("/profile")
def profile_page(request: Request, identity: Optional[Identity] = Depends(current_identity),
                 s: MemoryStore = Depends(get_store)):
    user = s.get_user(identity.id) if identity else None
    if user is None:
        return redirect("/login")
    return render(request, "profile.html", user=identity, profile=user, msg_type=None)


@app.post("/profile")
def update_profile(
    request: Request,
    username: str = Form(""),
    language: str = Form(""),
    explanationStyle: str = Form(""),
    profileImage: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(current_identity),
    auth: AuthService = Depends(get_auth),
    sessions: SessionManager = Depends(get_sessions),
    s: MemoryStore = Depends(get_store),
):
    if identity is None:
        return redirect("/login")
    try:
        avatar, content_type = read_avatar(profileImage)
        identity = auth.update_profile(identity.id, username, language, explanationStyle,
                                       avatar=avatar, avatar_content_type=content_type)
    except AppError as e:
        return render(request, "profile.html", status_code=e.status_code, user=identity,
                      profile=s.get_user(identity.id), msg=e.message, msg_type="error")
    sessions.refresh(request.cookies.get(config.SESSION_COOKIE_NAME), identity)
    return render(request, "profile.html", user=identity, profile=s.get_user(identity.id),
                  msg="Profile updated successfully!", msg_type="success")


@app.get("/profile/avatar")
def avatar(identity: Identity = Depends(require_identity), s: MemoryStore = Depends(get_store)):
    user = s.get_user(identity.id)
    if user is None or user.avatar is None:
        raise NotFound("No avatar.")
    return Response(content=user.avatar, media_type=user.avatar_content_type or "application/octet-stream")

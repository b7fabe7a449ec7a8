# backend/memory_sqlalchemy.py
import uuid
from datetime import datetime
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError

from db import SessionLocal
from models import User, Conversation, SessionRecord, PLACEHOLDER_TITLE


def _new_id():
    return uuid.uuid4().hex


class MemoryStore:
    """Single-document find/update operations over users, conversations and sessions.

    Each method opens its own session and commits before returning, so every
    mutation is one atomic row update. Returned objects are detached
    (``expire_on_commit=False``) and safe to read after the session closes.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def _session(self):
        return self._session_factory()

    # --- USER MANAGEMENT ---
    def create_user(self, username, email, password_hash, role, field_of_work, goal,
                    otp, otp_expires, avatar=None, avatar_content_type=None):
        with self._session() as db:
            user = User(
                id=_new_id(),
                username=username,
                email=email,
                password_hash=password_hash,
                role=role,
                field_of_work=field_of_work,
                goal=goal,
                avatar=avatar,
                avatar_content_type=avatar_content_type,
                is_verified=False,
                otp=otp,
                otp_expires=otp_expires,
            )
            db.add(user)
            try:
                db.commit()
                return user
            except IntegrityError:
                db.rollback()
                return None

    def get_user(self, user_id):
        with self._session() as db:
            return db.get(User, user_id)

    def get_user_by_email(self, email):
        with self._session() as db:
            return db.scalars(select(User).where(User.email == email)).first()

    def get_user_by_username(self, username):
        with self._session() as db:
            return db.scalars(select(User).where(User.username == username)).first()

    def get_user_by_reset_token(self, token_hash):
        with self._session() as db:
            stmt = select(User).where(User.reset_token_hash == token_hash)
            return db.scalars(stmt).first()

    def set_otp(self, user_id, otp, expires):
        with self._session() as db:
            user = db.get(User, user_id)
            if user:
                user.otp = otp
                user.otp_expires = expires
                db.commit()
            return user

    def clear_otp(self, user_id, mark_verified=False):
        with self._session() as db:
            user = db.get(User, user_id)
            if user:
                user.otp = None
                user.otp_expires = None
                if mark_verified:
                    user.is_verified = True
                db.commit()
            return user

    def set_reset_token(self, user_id, token_hash, expires):
        with self._session() as db:
            user = db.get(User, user_id)
            if user:
                user.reset_token_hash = token_hash
                user.reset_expires = expires
                db.commit()
            return user

    def clear_reset_token(self, user_id):
        with self._session() as db:
            user = db.get(User, user_id)
            if user:
                user.reset_token_hash = None
                user.reset_expires = None
                db.commit()
            return user

    def reset_password(self, user_id, password_hash):
        with self._session() as db:
            user = db.get(User, user_id)
            if user:
                user.password_hash = password_hash
                user.reset_token_hash = None
                user.reset_expires = None
                db.commit()
            return user

    def update_profile(self, user_id, username, language, explanation_style,
                       avatar=None, avatar_content_type=None):
        with self._session() as db:
            user = db.get(User, user_id)
            if not user:
                return None
            user.username = username
            user.preferred_language = language
            user.explanation_style = explanation_style
            if avatar is not None:
                user.avatar = avatar
                user.avatar_content_type = avatar_content_type
            try:
                db.commit()
                return user
            except IntegrityError:
                db.rollback()
                return None

    # --- CONVERSATIONS ---
    def create_conversation(self, user_id, title=PLACEHOLDER_TITLE):
        with self._session() as db:
            now = datetime.utcnow()
            conv = Conversation(
                id=_new_id(),
                user_id=user_id,
                title=title,
                history=[],
                created_at=now,
                updated_at=now,
            )
            db.add(conv)
            db.commit()
            return conv

    def get_all_conversations(self, user_id):
        with self._session() as db:
            stmt = (
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc())
            )
            return db.scalars(stmt).all()

    def _owned(self, db, cid, user_id):
        stmt = select(Conversation).where(
            Conversation.id == cid,
            Conversation.user_id == user_id,
        )
        return db.scalars(stmt).first()

    def get_conversation(self, cid, user_id):
        with self._session() as db:
            return self._owned(db, cid, user_id)

    def save_history(self, cid, user_id, history, title=None):
        """Replace the stored history (last write wins) and optionally the title."""
        with self._session() as db:
            conv = self._owned(db, cid, user_id)
            if not conv:
                return None
            # assign a fresh list so the JSON column is flagged dirty
            conv.history = list(history)
            if title is not None:
                conv.title = title
            conv.updated_at = datetime.utcnow()
            db.commit()
            return conv

    def clear_conversation(self, cid, user_id):
        with self._session() as db:
            conv = self._owned(db, cid, user_id)
            if not conv:
                return None
            conv.history = []
            conv.title = PLACEHOLDER_TITLE
            conv.updated_at = datetime.utcnow()
            db.commit()
            return conv

    def delete_conversation(self, cid, user_id):
        with self._session() as db:
            conv = self._owned(db, cid, user_id)
            if not conv:
                return False
            db.delete(conv)
            db.commit()
            return True

    # --- SESSIONS ---
    def create_session(self, sid, user_id, data, expires_at, now=None):
        with self._session() as db:
            # sweep sessions whose cookies never came back
            cutoff = now or datetime.utcnow()
            db.execute(delete(SessionRecord).where(SessionRecord.expires_at <= cutoff))
            record = SessionRecord(id=sid, user_id=user_id, data=data, expires_at=expires_at)
            db.add(record)
            db.commit()
            return record

    def get_session(self, sid):
        with self._session() as db:
            return db.get(SessionRecord, sid)

    def touch_session(self, sid, expires_at, data=None):
        with self._session() as db:
            record = db.get(SessionRecord, sid)
            if record:
                record.expires_at = expires_at
                if data is not None:
                    record.data = dict(data)
                db.commit()
            return record

    def delete_session(self, sid):
        with self._session() as db:
            record = db.get(SessionRecord, sid)
            if record:
                db.delete(record)
                db.commit()

import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError

import config


@dataclass(frozen=True)
class Identity:
    """Snapshot of the logged-in user, passed explicitly to request handlers."""

    id: str
    username: str
    email: str
    role: str
    field_of_work: str
    goal: str
    preferred_language: str
    explanation_style: str
    has_avatar: bool = False

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            field_of_work=user.field_of_work,
            goal=user.goal,
            preferred_language=user.preferred_language,
            explanation_style=user.explanation_style,
            has_avatar=user.avatar is not None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class SessionManager:
    """Server-side session records behind a signed cookie.

    The cookie only carries a JWT naming the session record; the identity
    snapshot lives in the store. Each successful load slides the expiry.
    """

    def __init__(self, store, secret=config.SESSION_SECRET,
                 algorithm=config.SESSION_ALGORITHM, ttl_days=config.SESSION_TTL_DAYS,
                 clock=datetime.utcnow):
        self.store = store
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    @property
    def max_age(self) -> int:
        return int(self.ttl.total_seconds())

    def _sid(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            payload = jwt.decode(cookie, self.secret, algorithms=[self.algorithm])
        except JWTError:
            return None
        return payload.get("sid")

    def create(self, identity: Identity) -> str:
        sid = secrets.token_urlsafe(32)
        now = self.clock()
        self.store.create_session(sid, identity.id, identity.to_dict(), now + self.ttl, now=now)
        return jwt.encode({"sid": sid}, self.secret, algorithm=self.algorithm)

    def load(self, cookie: Optional[str]) -> Optional[Identity]:
        sid = self._sid(cookie)
        if not sid:
            return None
        record = self.store.get_session(sid)
        if not record:
            return None
        now = self.clock()
        if record.expires_at <= now:
            self.store.delete_session(sid)
            return None
        self.store.touch_session(sid, now + self.ttl)
        return Identity(**record.data)

    def refresh(self, cookie: Optional[str], identity: Identity):
        sid = self._sid(cookie)
        if sid:
            self.store.touch_session(sid, self.clock() + self.ttl, data=identity.to_dict())

    def destroy(self, cookie: Optional[str]):
        sid = self._sid(cookie)
        if sid:
            self.store.delete_session(sid)

import os
import re
from datetime import datetime, timedelta

import pytest

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_SECRET"] = "test-secret"
os.environ.setdefault("AI_API_KEY", "test-key")

from db import Base, engine  # noqa: E402
from memory_sqlalchemy import MemoryStore  # noqa: E402
from auth_flow import AuthService  # noqa: E402
from conversations import ConversationService  # noqa: E402
from errors import UpstreamError  # noqa: E402


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, text):
        self.sent.append({"to": to, "subject": subject, "text": text})

    def last_code(self, to):
        for mail in reversed(self.sent):
            if mail["to"] == to:
                match = re.search(r"\b(\d{6})\b", mail["text"])
                if match:
                    return match.group(1)
        return None

    def last_reset_token(self, to):
        for mail in reversed(self.sent):
            if mail["to"] == to and "/reset/" in mail["text"]:
                return mail["text"].rsplit("/reset/", 1)[1].strip()
        return None


class FakeAssistant:
    def __init__(self, reply="Here is the answer.", title="Sorting Arrays Fast"):
        self.reply = reply
        self.title = title
        self.calls = []
        self.title_calls = []
        self.fail = False
        self.fail_title = False

    def generate(self, turns):
        self.calls.append(turns)
        if self.fail:
            raise UpstreamError()
        return [{"role": "model", "parts": [{"text": self.reply}]}]

    def generate_title(self, text):
        self.title_calls.append(text)
        if self.fail_title:
            raise UpstreamError()
        return self.title


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(store, mailer, clock):
    return AuthService(store, mailer, clock=clock, base_url="http://testserver")


@pytest.fixture
def chats(store, assistant):
    return ConversationService(store, assistant)


@pytest.fixture
def verified_user(auth, mailer):
    user = auth.register("alice", "a@x.com", "secret1", "learner", "backend", "ship features")
    auth.verify_otp("a@x.com", mailer.last_code("a@x.com"))
    return user


@pytest.fixture
def client(mailer, assistant, clock):
    from fastapi.testclient import TestClient
    import app as app_module

    app_module.app.dependency_overrides[app_module.get_mailer] = lambda: mailer
    app_module.app.dependency_overrides[app_module.get_assistant] = lambda: assistant
    app_module.app.dependency_overrides[app_module.get_clock] = lambda: clock
    with TestClient(app_module.app) as c:
        yield c
    app_module.app.dependency_overrides.clear()

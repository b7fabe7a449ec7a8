import pytest

import config
from models import PLACEHOLDER_TITLE

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def register(client, username="alice", email="a@x.com", password="secret1", files=None):
    return client.post("/auth/register", data={
        "username": username,
        "email": email,
        "password": password,
        "role": "learner",
        "fieldOfWork": "backend",
        "goal": "ship features",
    }, files=files, follow_redirects=False)


def signup_and_login(client, mailer, username="alice", email="a@x.com"):
    register(client, username, email)
    client.post("/auth/verify", data={"email": email, "otp": mailer.last_code(email)},
                follow_redirects=False)
    resp = client.post("/auth/login", data={"email": email, "password": "secret1"},
                       follow_redirects=False)
    assert resp.status_code == 303
    return resp


def user_turn(text):
    return {"role": "user", "parts": [{"text": text}]}


# --- AUTH ---
def test_register_redirects_to_verification(client, mailer):
    resp = register(client)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/verify?email=a%40x.com"
    assert len(mailer.sent) == 1


def test_register_rerenders_with_message(client):
    resp = register(client, password="123")
    assert resp.status_code == 400
    assert "Password must be at least 6 characters long" in resp.text
    assert 'value="alice"' in resp.text


def test_register_duplicate_verified(client, mailer):
    signup_and_login(client, mailer)
    resp = register(client, username="alice2")
    assert resp.status_code == 409
    assert "already registered and verified" in resp.text


def test_register_rejects_non_image_upload(client):
    resp = register(client, files={"profileImage": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 400
    assert "Images Only" in resp.text


def test_register_rejects_oversized_avatar(client, store, mailer):
    big = b"\x00" * (config.MAX_AVATAR_BYTES + 1)
    resp = register(client, files={"profileImage": ("big.png", big, "image/png")})

    assert resp.status_code == 400
    assert "File too large" in resp.text
    assert 'value="alice"' in resp.text
    assert store.get_user_by_email("a@x.com") is None
    assert mailer.sent == []


def test_verify_then_login_sets_session(client, mailer):
    register(client)
    resp = client.post("/auth/verify", data={"email": "a@x.com", "otp": mailer.last_code("a@x.com")},
                       follow_redirects=False)
    assert resp.headers["location"] == "/login?status=verified"

    resp = client.post("/auth/login", data={"email": "a@x.com", "password": "secret1"},
                       follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/chat"
    assert config.SESSION_COOKIE_NAME in resp.cookies

    assert client.get("/chat").status_code == 200


def test_verify_wrong_code_rerenders(client, mailer):
    register(client)
    code = mailer.last_code("a@x.com")
    wrong = "100000" if code != "100000" else "100001"
    resp = client.post("/auth/verify", data={"email": "a@x.com", "otp": wrong})
    assert resp.status_code == 400
    assert "incorrect" in resp.text


def test_login_unverified_offers_verify_link(client):
    register(client)
    resp = client.post("/auth/login", data={"email": "a@x.com", "password": "secret1"})
    assert resp.status_code == 403
    assert "/verify?email=a%40x.com" in resp.text


def test_login_invalid_credentials_identical(client, mailer):
    signup_and_login(client, mailer)
    client.get("/auth/logout")
    unknown = client.post("/auth/login", data={"email": "nobody@x.com", "password": "secret1"})
    wrong = client.post("/auth/login", data={"email": "a@x.com", "password": "nope-nope"})
    assert unknown.status_code == wrong.status_code == 401
    assert "Invalid credentials" in unknown.text and "Invalid credentials" in wrong.text


def test_resend_otp_json(client, mailer):
    resp = client.post("/auth/resend-otp", json={"email": "nobody@x.com"})
    assert resp.status_code == 404
    assert resp.json() == {"message": "User not found."}

    register(client)
    resp = client.post("/auth/resend-otp", json={"email": "a@x.com"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "A new OTP has been sent to your email."}


def test_otp_login_flow(client, mailer):
    signup_and_login(client, mailer)
    client.get("/auth/logout")

    unknown = client.post("/auth/request-otp-login", data={"email": "nobody@x.com"}, follow_redirects=False)
    known = client.post("/auth/request-otp-login", data={"email": "a@x.com"}, follow_redirects=False)
    assert unknown.status_code == known.status_code == 303
    assert known.headers["location"].endswith("&status=sent")

    page = client.get(known.headers["location"])
    assert "If your account exists, an OTP has been sent." in page.text

    resp = client.post("/auth/otp-login", data={"email": "a@x.com", "otp": mailer.last_code("a@x.com")},
                       follow_redirects=False)
    assert resp.headers["location"] == "/chat"
    assert client.get("/api/chats").status_code == 200


def test_otp_login_expired(client, mailer, clock):
    signup_and_login(client, mailer)
    client.post("/auth/request-otp-login", data={"email": "a@x.com"})
    clock.advance(minutes=11)
    resp = client.post("/auth/otp-login", data={"email": "a@x.com", "otp": mailer.last_code("a@x.com")})
    assert resp.status_code == 410
    assert "expired" in resp.text


def test_logout_is_idempotent(client, mailer):
    signup_and_login(client, mailer)
    resp = client.get("/auth/logout", follow_redirects=False)
    assert resp.headers["location"] == "/login"
    assert client.get("/api/chats").status_code == 401
    assert client.get("/auth/logout", follow_redirects=False).status_code == 303


def test_forgot_password_reply_is_identical(client, mailer):
    signup_and_login(client, mailer)
    unknown = client.post("/auth/forgot", data={"email": "nobody@x.com"})
    known = client.post("/auth/forgot", data={"email": "a@x.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.text == known.text


def test_password_reset_flow(client, mailer):
    signup_and_login(client, mailer)
    client.post("/auth/forgot", data={"email": "a@x.com"})
    token = mailer.last_reset_token("a@x.com")

    assert client.get(f"/reset/{token}").status_code == 200
    mismatch = client.post(f"/auth/reset/{token}", data={"password": "newpass1", "confirmPassword": "other1"})
    assert "Passwords do not match." in mismatch.text

    resp = client.post(f"/auth/reset/{token}", data={"password": "newpass1", "confirmPassword": "newpass1"},
                       follow_redirects=False)
    assert resp.headers["location"] == "/login?status=password_reset_success"

    stale = client.get(f"/reset/{token}")
    assert "invalid or has expired" in stale.text

    resp = client.post("/auth/login", data={"email": "a@x.com", "password": "newpass1"},
                       follow_redirects=False)
    assert resp.headers["location"] == "/chat"


# --- PAGES ---
def test_pages_redirect_when_logged_out(client):
    assert client.get("/chat", follow_redirects=False).headers["location"] == "/login"
    assert client.get("/profile", follow_redirects=False).headers["location"] == "/login"
    assert client.get("/").status_code == 200


def test_home_redirects_to_chat_when_logged_in(client, mailer):
    signup_and_login(client, mailer)
    assert client.get("/", follow_redirects=False).headers["location"] == "/chat"


# --- CHAT API ---
@pytest.mark.parametrize("method,url", [
    ("get", "/api/chats"),
    ("get", "/api/chat/abc"),
    ("post", "/api/chat/new"),
    ("post", "/api/chat/clear/abc"),
    ("delete", "/api/chat/abc"),
])
def test_chat_api_requires_session(client, method, url):
    resp = getattr(client, method)(url)
    assert resp.status_code == 401
    assert "error" in resp.json()


def test_chat_lifecycle(client, mailer, assistant):
    signup_and_login(client, mailer)

    created = client.post("/api/chat/new")
    assert created.status_code == 201
    chat = created.json()
    assert chat["title"] == PLACEHOLDER_TITLE and chat["history"] == []

    resp = client.post("/api/chat", json={
        "chatId": chat["id"], "history": [user_turn("How do I sort?")], "firstMessage": "How do I sort?",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["botResponse"]["candidates"][0]["content"]["parts"][0]["text"] == "Here is the answer."
    assert body["updatedChat"]["title"] == "Sorting Arrays Fast"
    assert len(body["updatedChat"]["history"]) == 2

    listed = client.get("/api/chats").json()
    assert [c["id"] for c in listed] == [chat["id"]]

    cleared = client.post(f"/api/chat/clear/{chat['id']}").json()
    assert cleared["message"] == "Chat history cleared."
    fetched = client.get(f"/api/chat/{chat['id']}").json()
    assert fetched["history"] == [] and fetched["title"] == PLACEHOLDER_TITLE

    deleted = client.delete(f"/api/chat/{chat['id']}")
    assert deleted.json() == {"message": "Chat deleted successfully."}
    assert client.get(f"/api/chat/{chat['id']}").status_code == 404


def test_send_message_upstream_failure_is_generic(client, mailer, assistant):
    signup_and_login(client, mailer)
    chat = client.post("/api/chat/new").json()
    assistant.fail = True

    resp = client.post("/api/chat", json={"chatId": chat["id"], "history": [user_turn("hi")]})

    assert resp.status_code == 502
    assert resp.json() == {"error": "Failed to get response from AI."}


def test_send_message_bad_history(client, mailer):
    signup_and_login(client, mailer)
    chat = client.post("/api/chat/new").json()
    resp = client.post("/api/chat", json={"chatId": chat["id"], "history": []})
    assert resp.status_code == 400


def test_send_message_without_chat_id(client, mailer, assistant):
    signup_and_login(client, mailer)
    resp = client.post("/api/chat", json={"history": [user_turn("hi")]})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Chat id is required."}
    assert assistant.calls == []


def test_chats_are_isolated_between_users(client, mailer):
    signup_and_login(client, mailer)
    chat = client.post("/api/chat/new").json()
    client.get("/auth/logout")

    signup_and_login(client, mailer, username="mallory", email="m@x.com")
    assert client.get("/api/chats").json() == []
    assert client.get(f"/api/chat/{chat['id']}").status_code == 404
    assert client.post(f"/api/chat/clear/{chat['id']}").status_code == 404
    assert client.delete(f"/api/chat/{chat['id']}").status_code == 404
    resp = client.post("/api/chat", json={"chatId": chat["id"], "history": [user_turn("hi")]})
    assert resp.status_code == 404


# --- PROFILE ---
def test_profile_update_and_avatar(client, mailer):
    signup_and_login(client, mailer)
    assert client.get("/profile/avatar").status_code == 404

    resp = client.post("/profile", data={
        "username": "alice_b", "language": "Python", "explanationStyle": "step-by-step",
    }, files={"profileImage": ("me.png", PNG, "image/png")})

    assert resp.status_code == 200
    assert "Profile updated successfully!" in resp.text
    avatar = client.get("/profile/avatar")
    assert avatar.content == PNG
    assert avatar.headers["content-type"] == "image/png"
    # the session snapshot follows the edit
    assert "alice_b" in client.get("/chat").text


def test_profile_update_rejects_bad_style(client, mailer):
    signup_and_login(client, mailer)
    resp = client.post("/profile", data={"username": "alice", "language": "Go", "explanationStyle": "haiku"})
    assert resp.status_code == 400
    assert "Invalid explanation style." in resp.text


def test_register_with_avatar(client, mailer):
    register(client, files={"profileImage": ("me.gif", b"GIF89a....", "image/gif")})
    client.post("/auth/verify", data={"email": "a@x.com", "otp": mailer.last_code("a@x.com")})
    client.post("/auth/login", data={"email": "a@x.com", "password": "secret1"})
    assert client.get("/profile/avatar").content == b"GIF89a...."


def test_profile_rejects_oversized_avatar(client, mailer, store):
    signup_and_login(client, mailer)
    big = b"\x00" * (config.MAX_AVATAR_BYTES + 1)
    resp = client.post("/profile", data={
        "username": "alice_b", "language": "Python", "explanationStyle": "step-by-step",
    }, files={"profileImage": ("big.png", big, "image/png")})

    assert resp.status_code == 400
    assert "File too large" in resp.text
    assert store.get_user_by_email("a@x.com").avatar is None
    assert client.get("/profile/avatar").status_code == 404

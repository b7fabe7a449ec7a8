import logging

from errors import NotFound, ValidationError, UpstreamError
from assistant import build_system_prompt, turn_text
from models import PLACEHOLDER_TITLE

logger = logging.getLogger("uvicorn.error")

ROLES = ("user", "model")


def validate_history(history):
    """Normalize client-supplied turns to ``{"role", "parts": [{"text"}]}``."""
    if not isinstance(history, list) or not history:
        raise ValidationError("Chat history is required.")
    turns = []
    for turn in history:
        if not isinstance(turn, dict) or turn.get("role") not in ROLES:
            raise ValidationError("Each turn needs a role of 'user' or 'model'.")
        parts = turn.get("parts")
        if not isinstance(parts, list) or not parts:
            raise ValidationError("Each turn needs at least one part.")
        clean = []
        for part in parts:
            if not isinstance(part, dict) or not isinstance(part.get("text"), str):
                raise ValidationError("Each part needs a text field.")
            clean.append({"text": part["text"]})
        turns.append({"role": turn["role"], "parts": clean})
    return turns


def first_user_text(history):
    for turn in history:
        if turn["role"] == "user":
            return turn_text(turn)
    return None


class ConversationService:
    def __init__(self, store, assistant):
        self.store = store
        self.assistant = assistant

    def list_conversations(self, user_id):
        return self.store.get_all_conversations(user_id)

    def create_conversation(self, user_id):
        return self.store.create_conversation(user_id)

    def get_conversation(self, user_id, cid):
        conv = self.store.get_conversation(cid, user_id)
        if not conv:
            raise NotFound("Chat not found.")
        return conv

    def send_message(self, user_id, cid, history, first_message=None):
        """Relay the running history to the assistant and persist the exchange.

        Returns ``(candidates, conversation)``. A title is generated only when
        the stored history was empty before this exchange, whatever the client
        claims about it.
        """
        if not cid:
            raise ValidationError("Chat id is required.")
        conv = self.get_conversation(user_id, cid)
        turns = validate_history(history)
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found.")

        candidates = self.assistant.generate([build_system_prompt(user)] + turns)
        new_history = turns + [{"role": "model", "parts": candidates[0]["parts"]}]

        title = None
        if not conv.history:
            title = self._make_title(first_message or first_user_text(turns))

        updated = self.store.save_history(cid, user_id, new_history, title=title)
        if updated is None:
            # deleted while the assistant was answering
            raise NotFound("Chat not found.")
        return candidates, updated

    def _make_title(self, text):
        if not text or not text.strip():
            return None
        try:
            title = self.assistant.generate_title(text.strip())
        except UpstreamError:
            logger.warning("Title generation failed; keeping placeholder")
            return None
        return title or PLACEHOLDER_TITLE

    def clear_conversation(self, user_id, cid):
        conv = self.store.clear_conversation(cid, user_id)
        if not conv:
            raise NotFound("Chat not found.")
        return conv

    def delete_conversation(self, user_id, cid):
        if not self.store.delete_conversation(cid, user_id):
            raise NotFound("Chat not found.")

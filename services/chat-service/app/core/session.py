import uuid
from typing import Optional


def ensure_session_id(session_id: Optional[str]) -> str:
    """Return the caller's session id, or a fresh uuid4 when it is missing or blank.

    The id keys the model-side session memory and is scrubbed from replies.
    """
    if session_id is None or not str(session_id).strip():
        return str(uuid.uuid4())
    return session_id

import secrets
from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="api-token")


def new_token_id() -> str:
    return secrets.token_hex(16)


def issue_token(user_id: int, token_id: str) -> str:
    return _serializer().dumps({"u": user_id, "t": token_id})


def read_token(token: str, max_age_hours: Optional[int] = None) -> Optional[tuple[int, str]]:
    """Return ``(user_id, token_id)`` for a valid signature, ``None`` otherwise.

    Expired and tampered tokens both come back as ``None``. Whether the token
    id is still live is the caller's concern.
    """
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadData:
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    token_id = data.get("t")
    if not isinstance(user_id, int) or not isinstance(token_id, str):
        return None
    return user_id, token_id

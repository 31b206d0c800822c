from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="owner-token")


def issue_owner_token(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValueError("User id cannot be empty")
    return _serializer().dumps({"u": user_id.strip()})


def resolve_owner(token: str, max_age_secs: Optional[int] = None) -> Optional[str]:
    """Return the user id carried by ``token``, or None if it is invalid or expired."""
    if not token:
        return None
    if max_age_secs is None:
        max_age_secs = get_settings().auth_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired:
        return None
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id

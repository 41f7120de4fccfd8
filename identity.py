from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="user-token")


def issue_user_token(user_id: str) -> str:
    if not user_id:
        raise ValueError("user_id is required")
    return _serializer().dumps({"u": user_id})


def resolve_user_id(token: Optional[str]) -> Optional[str]:
    """Return the user id signed into ``token``, or None if it does not verify."""
    if not token:
        return None
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadData:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

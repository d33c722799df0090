from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class InvalidAccessToken(ValueError):
    pass


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def issue_access_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def verify_access_token(token: str) -> int:
    """Return the user id carried by ``token`` or raise InvalidAccessToken."""
    if not token:
        raise InvalidAccessToken("Missing token")
    max_age = get_settings().token_max_age_days * 86400
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise InvalidAccessToken("Token expired") from exc
    except BadSignature as exc:
        raise InvalidAccessToken("Invalid token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise InvalidAccessToken("Invalid token")
    return user_id

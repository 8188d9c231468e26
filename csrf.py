from itsdangerous import BadSignature, URLSafeTimedSerializer


def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt="csrf-token")


def generate_csrf_token(secret: str, user_id: int) -> str:
    return _serializer(secret).dumps({"u": user_id})


def validate_csrf_token(
    token: str, secret: str, user_id: int, max_age_hours: int = 24
) -> bool:
    if not token:
        return False
    try:
        # SignatureExpired is a BadSignature, so stale tokens fail here too.
        data = _serializer(secret).loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    return data.get("u") == user_id

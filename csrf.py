import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"
TOKEN_SCOPE = "budget-api"


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(max_age_hours: int = 2) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"s": TOKEN_SCOPE, "ts": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def validate_csrf_token(token: Optional[str]) -> bool:
    if not token:
        return False
    serializer = _serializer()
    try:
        data = serializer.loads(token)
    except BadSignature:
        return False

    if not isinstance(data, dict) or data.get("s") != TOKEN_SCOPE:
        return False

    current_time = int(time.time())
    expiry_time = data.get("exp", 0)

    if current_time > expiry_time:
        return False

    return True

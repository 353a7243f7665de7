from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from invoicing.auth import token_subject
from invoicing.config import payment_rate_limit


def user_id_or_ip(request: Request) -> str:
    """Key authenticated callers by user id, everyone else by client address."""
    user_id = token_subject(request.headers.get("Authorization"))
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=user_id_or_ip)

PAYMENT_LIMIT = payment_rate_limit()

import os
from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt


def token_subject(authorization: Optional[str]) -> Optional[str]:
    """Return the subject of a valid ``Bearer`` JWT, or None."""
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            return None
        claims = jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=["HS256"])
    except (AttributeError, ValueError, JWTError):
        return None

    user_id = claims.get("sub")
    return str(user_id) if user_id else None


def verify_token(authorization: str = Header(None)) -> str:
    user_id = token_subject(authorization)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return user_id

from datetime import timedelta
from typing import Any, Optional, Union

from jose import jwt
from pydantic import BaseModel

from carecoord.core.config import settings
from carecoord.utils.timezone import utc_now

# Export the algorithm constant for use in other modules
ALGORITHM = settings.ALGORITHM


class TokenPayload(BaseModel):
    sub: str
    role: Optional[str] = None


def create_access_token(
    subject: Union[str, Any],
    role: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    if expires_delta:
        expire = utc_now() + expires_delta
    else:
        expire = utc_now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expire, "sub": str(subject), "role": role}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> TokenPayload:
    """Raises jose.JWTError for bad signatures/expired tokens, ValidationError for missing claims"""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    return TokenPayload(**payload)

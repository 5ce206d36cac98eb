from datetime import datetime
from typing import Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import ValidationError

from carecoord.core import security
from carecoord.core.config import settings
from carecoord.db.session import SessionLocal
from carecoord.reminders.dispatcher import ReminderDispatcher
from carecoord.reminders.service import Actor
from carecoord.reminders.transports import build_transports
from carecoord.utils.timezone import utc_now

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login"
)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_actor(token: str = Depends(reusable_oauth2)) -> Actor:
    try:
        token_data = security.decode_access_token(token)
    except (JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    return Actor(id=token_data.sub, role=token_data.role)


def get_current_care_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_care_team:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The user doesn't have enough privileges",
        )
    return actor


_dispatcher = None


def get_dispatcher() -> ReminderDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ReminderDispatcher(build_transports(SessionLocal))
    return _dispatcher


def get_clock() -> Callable[[], datetime]:
    return utc_now

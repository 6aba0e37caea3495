"""Console admin accounts: fastapi-users wiring with a JWT cookie backend.

Only the admin console authenticates; the public calculator API is anonymous.
"""
import logging

from fastapi import Depends
from fastapi_users import FastAPIUsers
from fastapi_users.authentication import AuthenticationBackend, CookieTransport, JWTStrategy
from fastapi_users.db import SQLAlchemyUserDatabase
from fastapi_users.manager import BaseUserManager, IntegerIDMixin

from .database import get_db
from .models import User
from .settings.config import settings

logger = logging.getLogger(__name__)

SECRET = settings.SECRET.strip()
if not SECRET or SECRET == "CHANGE_ME_SECRET":
    raise RuntimeError(
        "SECRET environment variable must be set to a strong value; the default placeholder is not allowed."
    )

SESSION_SECONDS = max(1, settings.ADMIN_SESSION_HOURS) * 3600


async def get_user_db(session=Depends(get_db)):
    yield SQLAlchemyUserDatabase(session, User)


class AdminManager(IntegerIDMixin, BaseUserManager[User, int]):
    reset_password_token_secret = SECRET
    verification_token_secret = SECRET

    async def on_after_login(self, user: User, request=None, response=None):
        if not user.is_superuser:
            # can sign in but every /api/admin route answers 403
            logger.warning("Non-admin account %s signed in to the console", user.id)
        else:
            logger.info("Admin %s signed in", user.id)

    async def on_after_update(self, user: User, update_dict: dict, request=None):
        logger.info("Admin %s updated fields: %s", user.id, ", ".join(sorted(update_dict)))

    async def on_after_forgot_password(self, user: User, token: str, request=None):
        logger.info("Password reset requested for admin %s", user.id)


async def get_user_manager(user_db=Depends(get_user_db)):
    yield AdminManager(user_db)


cookie_transport = CookieTransport(
    cookie_name="console_session",
    cookie_max_age=SESSION_SECONDS,
    cookie_secure=settings.COOKIE_SECURE,
    cookie_httponly=True,
)


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=SECRET, lifetime_seconds=SESSION_SECONDS)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=cookie_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, int](get_user_manager, [auth_backend])

current_admin_optional = fastapi_users.current_user(optional=True)
current_active_admin = fastapi_users.current_user(active=True)

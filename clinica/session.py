"""Authenticated session context.

Holds the access token and user identity for one client. It is created
explicitly and handed to the gateway; nothing reads it from module state.

Lifecycle:
- hydrate(): restore token + user from persisted storage
- start(): store a fresh login
- clear(): logout, wipe storage and memory
"""
import json
from typing import Dict, Optional

from pydantic import ValidationError

from clinica.logging_config import get_logger
from clinica.models import LoginResponse, User
from clinica.storage import ClientStorage

logger = get_logger(__name__)

TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "authRefreshToken"
USER_KEY = "authUser"


class SessionContext:
    """Token and identity of the logged-in user."""

    def __init__(self, storage: ClientStorage):
        self.storage = storage
        self.token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[User] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user) and bool(self.token)

    def hydrate(self) -> bool:
        """
        Restore the session persisted by a previous run.

        A user entry that cannot be parsed invalidates the whole session:
        token and user keys are removed.

        Returns:
            True if a session was restored
        """
        token = self.storage.get_item(TOKEN_KEY)
        raw_user = self.storage.get_item(USER_KEY)

        if not (token and raw_user):
            return False

        try:
            user = User.model_validate(json.loads(raw_user))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("saved_user_unreadable", error=str(e))
            self.storage.remove_item(TOKEN_KEY)
            self.storage.remove_item(USER_KEY)
            return False

        self.token = token
        self.refresh_token = self.storage.get_item(REFRESH_TOKEN_KEY)
        self.user = user
        logger.info("session_restored", user=user.username, tipo_usuario=user.tipo_usuario)
        return True

    def start(self, response: LoginResponse, username: str) -> User:
        """Store a successful login in memory and in storage."""
        user = User(
            username=username,
            nombre=response.nombre,
            tipo_usuario=response.tipo_usuario
        )
        self.token = response.access
        self.refresh_token = response.refresh
        self.user = user

        self.storage.set_item(USER_KEY, user.model_dump_json())
        self.storage.set_item(TOKEN_KEY, response.access)
        self.storage.set_item(REFRESH_TOKEN_KEY, response.refresh)
        logger.info("session_started", user=username, tipo_usuario=response.tipo_usuario)
        return user

    def clear(self) -> None:
        """Logout: forget the identity and remove every persisted key."""
        self.token = None
        self.refresh_token = None
        self.user = None
        for key in (TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY):
            self.storage.remove_item(key)
        logger.info("session_cleared")

    def authorization_header(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

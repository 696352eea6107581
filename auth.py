import logging
import uuid
from typing import Optional

from pydantic import BaseModel

from errors import ExternalServiceError

logger = logging.getLogger(__name__)


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


def normalize_user(user_obj, session=None) -> Optional[SessionUser]:
    if not user_obj:
        return None
    uid = getattr(user_obj, "id", None)
    email = getattr(user_obj, "email", None)
    if isinstance(user_obj, dict):
        uid, email = user_obj.get("id"), user_obj.get("email")
    if not uid:
        return None
    token = getattr(session, "access_token", None) if session else None
    return SessionUser(id=str(uid), email=email, access_token=token)


class SupabaseIdentity:
    """Sign-in through Supabase Auth on the client the session also queries with."""

    def __init__(self, client):
        self.client = client

    def _session_user(self, action: str, call) -> SessionUser:
        try:
            resp = call()
        except Exception as e:
            raise ExternalServiceError(f"{action} failed: {e}") from e
        user = normalize_user(getattr(resp, "user", None), getattr(resp, "session", None))
        if user is None:
            raise ExternalServiceError(f"{action} failed. Check credentials.")
        logger.info("%s succeeded for %s", action, user.id)
        return user

    def sign_in_anonymously(self) -> SessionUser:
        return self._session_user("Anonymous sign-in", self.client.auth.sign_in_anonymously)

    def sign_in(self, email: str, password: str) -> SessionUser:
        return self._session_user(
            "Login", lambda: self.client.auth.sign_in_with_password({"email": email, "password": password})
        )

    def sign_up(self, email: str, password: str) -> SessionUser:
        return self._session_user(
            "Register", lambda: self.client.auth.sign_up({"email": email, "password": password})
        )

    def sign_out(self):
        try:
            self.client.auth.sign_out()
        except Exception as e:
            raise ExternalServiceError(f"Sign-out failed: {e}") from e


class LocalIdentity:
    """Identity for the in-memory backend: every sign-in is a fresh id."""

    def sign_in_anonymously(self) -> SessionUser:
        return SessionUser(id=uuid.uuid4().hex)

    def sign_in(self, email: str, password: str) -> SessionUser:
        return SessionUser(id=uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email}").hex, email=email)

    sign_up = sign_in

    def sign_out(self):
        pass

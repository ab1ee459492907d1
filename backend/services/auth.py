import uuid
from typing import Protocol


class AuthProvider(Protocol):
    def get_current_user_id(self) -> str:
        """Stable, opaque id for the calling client."""
        ...


class AnonymousAuthProvider:
    """Issues a fresh anonymous identity per sign-in, like anonymous Firebase auth."""

    def get_current_user_id(self) -> str:
        return str(uuid.uuid4())

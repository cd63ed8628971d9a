import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Identity state of one client connection.

    Updated on every identity-provider change; ``clear`` tears it down on
    sign-out.
    """

    user: Optional[Dict[str, Any]] = None
    profile: Optional[Dict[str, Any]] = None
    access_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id") if self.user else None

    @property
    def display_name(self) -> str:
        if not self.user:
            return ""
        profile = self.profile or {}
        email = self.user.get("email") or ""
        return (
            self.user.get("display_name")
            or profile.get("display_name")
            or email.split("@")[0]
            or "User"
        )

    def update(self, user: Optional[Dict[str, Any]], access_token: Optional[str] = None) -> None:
        if user is None:
            self.clear()
            return
        if self.user_id != user.get("id"):
            self.profile = None
        self.user = user
        if access_token:
            self.access_token = access_token

    def clear(self) -> None:
        self.user = None
        self.profile = None
        self.access_token = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authenticated": self.is_authenticated,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "email": self.user.get("email") if self.user else None,
        }


class ModalName(str, Enum):
    AUTH = "auth"
    ADD_LISTING = "add_listing"
    RATE_LISTING = "rate_listing"


@dataclass
class Modals:
    """Open/closed flag per modal. Modals never affect each other."""

    states: Dict[ModalName, bool] = field(default_factory=lambda: {name: False for name in ModalName})
    selected_listing: Optional[Dict[str, Any]] = None

    def is_open(self, name: ModalName) -> bool:
        return self.states[name]

    def open(self, name: ModalName) -> None:
        self.states[name] = True

    def close(self, name: ModalName) -> None:
        self.states[name] = False
        if name == ModalName.RATE_LISTING:
            self.selected_listing = None


def require_auth(session: Session, modals: Modals) -> bool:
    """Gate an action on authentication.

    When signed out the auth modal is opened and the caller must drop the
    action; it is not replayed after sign-in.
    """
    if session.is_authenticated:
        return True
    logger.debug("Gated action attempted without a session")
    modals.open(ModalName.AUTH)
    return False

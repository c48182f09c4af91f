"""
Client session and persisted client state.

Handles:
- Holding the bearer token and signed-in user
- Saving token, user and UI preferences to a JSON file
- Restoring them on start so a restart keeps the clinician signed in
"""
import json
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import BaseModel, ValidationError

from docsmile import config
from docsmile.errors import NotAuthenticatedError
from docsmile.logging_config import get_logger
from docsmile.models import LoginResult, User

logger = get_logger(__name__)


class StoredState(BaseModel):
    """Everything the client keeps between runs."""
    token: Optional[str] = None
    user: Optional[User] = None
    sidebar_collapsed: bool = False


class SessionStore:
    """Persists client state to a single JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize session store.

        Args:
            path: JSON file location. Defaults to DOCSMILE_SESSION_FILE.
        """
        self.path = Path(path or config.SESSION_FILE)

    def load(self) -> StoredState:
        """
        Load stored state.

        A missing file is an empty state; a corrupt one is logged and
        treated as empty.
        """
        if not self.path.exists():
            return StoredState()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return StoredState.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("session_file_unreadable", path=str(self.path), error=str(e))
            return StoredState()

    def save(self, state: StoredState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(
                state.model_dump(mode='json'),
                f,
                indent=2,
                ensure_ascii=False
            )

    def clear(self) -> None:
        """Delete the state file."""
        if self.path.exists():
            self.path.unlink()


class ClinicSession:
    """
    Signed-in clinician: token plus user.

    With a store attached, every change is written through, and the previous
    session is restored on construction. Without a store the session lives
    only in memory.
    """

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store
        self.token: Optional[str] = None
        self.user: Optional[User] = None
        self._sidebar_collapsed = False

        if store is not None:
            state = store.load()
            self.token = state.token
            self.user = state.user
            self._sidebar_collapsed = state.sidebar_collapsed

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and self.user is not None

    def login(self, result: LoginResult) -> User:
        """Populate the session from a successful login."""
        self.token = result.token
        self.user = result.user
        self._persist()
        logger.info("session_started", username=result.user.username)
        return result.user

    def logout(self) -> None:
        """Clear token and user (preferences are kept)."""
        username = self.user.username if self.user else None
        self.token = None
        self.user = None
        self._persist()
        logger.info("session_ended", username=username)

    def update_user(self, user: User) -> None:
        """Replace the stored user after a profile change."""
        self.user = User.model_validate(user.model_dump())
        self._persist()

    def require(self) -> User:
        """Return the signed-in user or raise NotAuthenticatedError."""
        if not self.is_authenticated:
            raise NotAuthenticatedError("Sign in required")
        return self.user

    def auth_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def sidebar_collapsed(self) -> bool:
        return self._sidebar_collapsed

    @sidebar_collapsed.setter
    def sidebar_collapsed(self, value: bool):
        self._sidebar_collapsed = bool(value)
        self._persist()

    def _persist(self):
        if self.store is None:
            return
        self.store.save(StoredState(
            token=self.token,
            user=self.user,
            sidebar_collapsed=self._sidebar_collapsed,
        ))

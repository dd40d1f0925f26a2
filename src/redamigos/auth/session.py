"""Process-wide session state.

One container holds the signed-in session and the cached profile. It is
hydrated once at start-up from the persisted session file, follows the
identity service's SIGNED_IN / SIGNED_OUT notifications, and pushes every
change to its subscribers.
"""

import json
import threading
from pathlib import Path
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from redamigos.auth.identity import AuthEvent, IdentityService, identity_service
from redamigos.auth.models import AuthSession
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.schemas import UserProfile

logger = get_logger(__name__)

StateListener = Callable[["SessionState"], None]


class SessionState:
    """Current session and profile, shared by every reader in the process."""

    def __init__(self, identity: IdentityService | None = None, session_file: Path | None = None):
        self.identity = identity or identity_service
        self.session_file = Path(session_file or settings.session_file)
        self.session: AuthSession | None = None
        self.profile: UserProfile | None = None
        self.initialized = False
        self._listeners: list[StateListener] = []
        self._lock = threading.Lock()
        self._unsubscribe_identity: Callable[[], None] | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.profile is not None

    def init(self) -> "SessionState":
        """Hydrate from the persisted session and start following the identity service.

        A missing, corrupt or expired session file leaves the state signed out.
        """
        if self._unsubscribe_identity is None:
            self._unsubscribe_identity = self.identity.on_auth_state_change(self._on_auth_event)

        stored = self._load()
        if stored is not None:
            profile = self.identity.user_from_token(stored.access_token)
            if profile is None:
                logger.info("stored_session_discarded", path=str(self.session_file))
                self._remove_file()
            else:
                self.session = stored
                self.profile = profile

        self.initialized = True
        logger.debug("session_state_initialized", authenticated=self.is_authenticated)
        self._notify()
        return self

    def teardown(self) -> None:
        """Clear the state and forget the persisted session."""
        self.session = None
        self.profile = None
        self._remove_file()
        logger.debug("session_state_cleared")
        self._notify()

    def close(self) -> None:
        """Stop following identity notifications."""
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None

    def refresh_profile(self) -> UserProfile | None:
        """Reload the cached profile from the session token."""
        if self.session is None:
            return None
        self.profile = self.identity.user_from_token(self.session.access_token)
        self._notify()
        return self.profile

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with this state after every change.

        Returns:
            Callable that unregisters the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.warning("session_listener_failed", error=str(e))

    def _on_auth_event(self, event: AuthEvent, auth_session: AuthSession | None) -> None:
        if event is AuthEvent.SIGNED_OUT:
            self.teardown()
            return

        if auth_session is None:
            return
        self.session = auth_session
        self.profile = self.identity.user_from_token(auth_session.access_token)
        self._save(auth_session)
        self._notify()

    # ==================== PERSISTENCE ====================

    def _load(self) -> AuthSession | None:
        if not self.session_file.exists():
            return None
        try:
            return AuthSession.model_validate(json.loads(self.session_file.read_text(encoding="utf-8")))
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning("stored_session_unreadable", path=str(self.session_file), error=str(e))
            return None

    def _save(self, auth_session: AuthSession) -> None:
        try:
            self.session_file.parent.mkdir(parents=True, exist_ok=True)
            self.session_file.write_text(auth_session.model_dump_json(), encoding="utf-8")
        except OSError as e:
            logger.warning("session_persist_failed", path=str(self.session_file), error=str(e))

    def _remove_file(self) -> None:
        try:
            self.session_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("session_remove_failed", path=str(self.session_file), error=str(e))

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from . import session_store
from .errors import AuthError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    public_key: str
    alias: str


@dataclass(frozen=True)
class Session:
    identity_handle: str
    public_key: str
    authenticated: bool = True


@dataclass(frozen=True)
class SessionChangeEvent:
    session: Optional[Session]
    restored: bool = False

    @property
    def authenticated(self) -> bool:
        return self.session is not None and self.session.authenticated


class IdentityProvider(Protocol):
    """Account lifecycle exposed by the identity system.

    ``create`` and ``authenticate`` resolve to an ack mapping whose ``err``
    entry carries the provider's reason code on failure.
    """

    @property
    def current_identity(self) -> Optional[Identity]: ...

    async def create(self, alias: str, secret: str) -> Dict[str, Any]: ...

    async def authenticate(self, alias: str, secret: str) -> Dict[str, Any]: ...

    def leave(self) -> None: ...

    def recall(self, identity: Identity) -> None: ...


SessionCallback = Callable[[SessionChangeEvent], None]


class SessionObservation:
    def __init__(self, manager: "AuthSessionManager", callback: SessionCallback) -> None:
        self._manager = manager
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._manager._observers.remove(self)


class AuthSessionManager:
    """Owns the single live :class:`Session` of this process."""

    def __init__(self, provider: IdentityProvider, *, session_path: Path | str | None = None) -> None:
        self.provider = provider
        self.session_path = Path(session_path).expanduser() if session_path is not None else None
        self._session: Optional[Session] = None
        self._observers: List[SessionObservation] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def register(self, name: str, secret: str) -> None:
        """Create an identity. Does not log in; call :meth:`login` afterwards."""

        ack = await self.provider.create(name, secret)
        if ack.get("err"):
            raise AuthError(str(ack["err"]))
        log.info("registered identity %s", name)

    async def login(self, name: str, secret: str) -> Session:
        ack = await self.provider.authenticate(name, secret)
        if ack.get("err"):
            raise AuthError(str(ack["err"]))
        identity = self.provider.current_identity
        if identity is None:
            raise AuthError("no_identity")
        session = Session(identity_handle=identity.alias, public_key=identity.public_key)
        self._set_session(session)
        if self.session_path is not None:
            try:
                session_store.save_session(identity.alias, identity.public_key, self.session_path)
            except OSError:
                log.warning("could not store session at %s", self.session_path, exc_info=True)
        log.info("logged in as %s", identity.alias)
        return session

    def logout(self) -> None:
        if self._session is None:
            return
        self._set_session(None)
        try:
            self.provider.leave()
        except Exception:
            log.warning("identity provider failed to leave", exc_info=True)
        if self.session_path is not None:
            try:
                session_store.clear_session(self.session_path)
            except OSError:
                log.warning("could not remove stored session %s", self.session_path, exc_info=True)
        log.info("logged out")

    def restore(self) -> Optional[Session]:
        """Recall a previously stored identity, emitting a session change if found."""

        if self.session_path is None:
            return None
        record = session_store.load_session(self.session_path)
        if record is None:
            return None
        identity = Identity(public_key=record["pub"], alias=record["alias"])
        self.provider.recall(identity)
        session = Session(identity_handle=identity.alias, public_key=identity.public_key)
        self._set_session(session, restored=True)
        log.info("restored session for %s", identity.alias)
        return session

    def observe_session(self, callback: SessionCallback) -> SessionObservation:
        observation = SessionObservation(self, callback)
        self._observers.append(observation)
        return observation

    def _set_session(self, session: Optional[Session], *, restored: bool = False) -> None:
        self._session = session
        event = SessionChangeEvent(session=session, restored=restored)
        for observation in list(self._observers):
            if not observation.cancelled:
                observation.callback(event)

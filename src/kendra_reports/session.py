"""
Auth state as seen by the reporting core.

The auth collaborator publishes events on a channel; ``AuthSession`` folds
them into one of three states. Scoping code only reads the resolved state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .errors import NotAuthenticatedError
from .models import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unauthenticated:
    reason: Optional[str] = None


@dataclass(frozen=True)
class Authenticating:
    pass


@dataclass(frozen=True)
class Authenticated:
    user: UserProfile


AuthState = Union[Unauthenticated, Authenticating, Authenticated]


@dataclass(frozen=True)
class SignInStarted:
    pass


@dataclass(frozen=True)
class SignedIn:
    user: UserProfile


@dataclass(frozen=True)
class SignInFailed:
    reason: str


@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class ProfileRefreshed:
    user: UserProfile


AuthEvent = Union[SignInStarted, SignedIn, SignInFailed, SignedOut, ProfileRefreshed]


class AuthSession:
    def __init__(self, state: Optional[AuthState] = None) -> None:
        self._state: AuthState = state or Unauthenticated()

    @classmethod
    def for_user(cls, user: UserProfile) -> "AuthSession":
        return cls(Authenticated(user))

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def actor(self) -> Optional[UserProfile]:
        if isinstance(self._state, Authenticated):
            return self._state.user
        return None

    def require_actor(self) -> UserProfile:
        actor = self.actor
        if actor is None:
            raise NotAuthenticatedError("No signed-in user for this session.")
        return actor

    def dispatch(self, event: AuthEvent) -> AuthState:
        self._state = self._transition(self._state, event)
        return self._state

    async def consume(self, channel: "asyncio.Queue[Optional[AuthEvent]]") -> AuthState:
        """Apply events from ``channel`` until a ``None`` sentinel arrives."""

        while True:
            event = await channel.get()
            try:
                if event is None:
                    return self._state
                self.dispatch(event)
            finally:
                channel.task_done()

    @staticmethod
    def _transition(state: AuthState, event: AuthEvent) -> AuthState:
        if isinstance(event, SignInStarted):
            return Authenticating()
        if isinstance(event, SignedIn):
            return Authenticated(event.user)
        if isinstance(event, SignInFailed):
            return Unauthenticated(reason=event.reason)
        if isinstance(event, SignedOut):
            return Unauthenticated()
        if isinstance(event, ProfileRefreshed):
            # a refresh only updates an existing sign-in
            if isinstance(state, Authenticated):
                return Authenticated(event.user)
            logger.debug("Ignoring profile refresh while %s", type(state).__name__)
            return state
        raise TypeError(f"Unknown auth event: {event!r}")

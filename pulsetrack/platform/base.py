"""Abstract base classes for heartbeat producers."""

from abc import ABC, abstractmethod
from typing import Optional

from pulsetrack.core.models import Heartbeat


class HeartbeatProvider(ABC):
    """Common interface for sampling the foreground activity.

    OS-specific implementations extract the app, window title, URL and
    working directory behind this interface.  They never classify.
    """

    @abstractmethod
    def get_heartbeat(self) -> Optional[Heartbeat]:
        """Return the current foreground observation, or None if unavailable."""
        pass

    @abstractmethod
    def is_user_idle(self) -> bool:
        """Return True if the screen is locked or there has been no input."""
        pass


class BackgroundSource(ABC):
    """Producer of heartbeats for sessions that run outside the foreground.

    Examples are background terminal tabs or a music player.  Each poll
    returns the currently active sessions keyed by a stable session key
    such as ``"terminal:<tab>"`` or ``"music:<source>"``.
    """

    @abstractmethod
    def poll(self) -> dict[str, Heartbeat]:
        pass

"""JSON-lines heartbeat reader.

Lets an external sampler (a shell script, an OS-specific helper) feed
PulseTrack by writing one JSON object per line, e.g.::

    {"session": "foreground", "appName": "Safari", "bundleId": "com.apple.Safari",
     "windowTitle": "Acme — Pricing", "url": "https://acme.com/pricing", "interval": 2}

``session`` defaults to ``"foreground"`` and ``interval`` to 2 seconds.
``timestamp`` (ISO 8601) is optional; offsets are converted to local time.
``idleSeconds`` (optional) is the time since the last user input.
Control lines of the form ``{"event": "sleep"}`` (also ``wake``,
``idle``, ``active``) are passed through as :class:`StreamEvent`.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Iterator, Optional, Union

from pulsetrack.core.models import Heartbeat

logger = logging.getLogger(__name__)

CONTROL_EVENTS = frozenset({"sleep", "wake", "idle", "active"})


@dataclass(frozen=True)
class StreamSample:
    session: str
    heartbeat: Heartbeat
    interval_seconds: int = 2
    timestamp: Optional[datetime] = None
    idle_seconds: Optional[int] = None


@dataclass(frozen=True)
class StreamEvent:
    name: str


StreamItem = Union[StreamSample, StreamEvent]


def _optional_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _local_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    timestamp = datetime.fromisoformat(value)
    if timestamp.tzinfo is not None:
        # Records are stored in naive local time.
        timestamp = timestamp.astimezone().replace(tzinfo=None)
    return timestamp


def parse_line(line: str) -> StreamItem:
    """Parse one JSON line.  Raises ``ValueError`` on malformed input."""
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("Each line must be a JSON object")

    if "event" in data:
        name = str(data["event"]).lower()
        if name not in CONTROL_EVENTS:
            raise ValueError(f"Unknown event {data['event']!r}")
        return StreamEvent(name)

    try:
        heartbeat = Heartbeat(
            app_name=str(data["appName"]),
            bundle_id=str(data.get("bundleId") or data["appName"]),
            window_title=str(data.get("windowTitle") or ""),
            url=_optional_str(data, "url"),
            extra_info=_optional_str(data, "extraInfo"),
        )
    except KeyError as exc:
        raise ValueError(f"Missing required field {exc.args[0]!r}") from exc

    interval = int(data.get("interval", 2))
    if interval < 0:
        raise ValueError("interval must be non-negative")

    idle = data.get("idleSeconds")
    if idle is not None:
        idle = int(idle)
        if idle < 0:
            raise ValueError("idleSeconds must be non-negative")

    return StreamSample(
        session=str(data.get("session") or "foreground"),
        heartbeat=heartbeat,
        interval_seconds=interval,
        timestamp=_local_timestamp(data.get("timestamp")),
        idle_seconds=idle,
    )


def read_stream(stream: IO[str]) -> Iterator[StreamItem]:
    """Yield parsed items from *stream*, skipping blank and invalid lines."""
    for lineno, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield parse_line(line)
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping invalid heartbeat on line %d: %s", lineno, exc)

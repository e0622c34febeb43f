"""
Progress event emitter and Server-Sent Events framing.

The emitter pushes each ProgressEvent to a single sink in program order. The
sink decides how the event reaches the observer (an asyncio.Queue feeding an SSE
response, a list in tests, ...).
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import Phase, ProgressEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Push channel for one harvest invocation."""

    def __init__(self, sink: Optional[EventSink] = None):
        """
        Args:
            sink: Callable receiving each event. ``None`` only logs.
        """
        self._sink = sink
        self.count = 0

    def emit(self, phase: Phase, message: str, error: Optional[str] = None) -> ProgressEvent:
        """Build, log and deliver one event. Returns the event."""
        event = ProgressEvent(phase=Phase(phase), message=message, error=error)
        self.count += 1

        if event.phase == Phase.ERROR:
            logger.warning(f"[{event.phase.value}] {message}" + (f": {error}" if error else ""))
        else:
            logger.info(f"[{event.phase.value}] {message}")

        if self._sink is not None:
            self._sink(event)
        return event


@dataclass
class SSEEvent:
    """A single SSE message."""
    event_type: str
    data: Any

    def format(self) -> str:
        """Format as SSE message."""
        return f"event: {self.event_type}\ndata: {json.dumps(self.data)}\n\n"

    @classmethod
    def from_progress(cls, event: ProgressEvent) -> "SSEEvent":
        return cls(event_type=event.phase.value, data=event.payload())

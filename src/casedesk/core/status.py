"""Time-limited status messages."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from casedesk.core.events import StatusLevel


@dataclass(frozen=True)
class StatusMessage:
    text: str
    level: StatusLevel
    expires_at: float


class StatusLine:
    """Holds the most recent status message until it expires.

    A newer message replaces the current one immediately.
    """

    def __init__(self, duration: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.duration = duration
        self._clock = clock
        self._message: Optional[StatusMessage] = None

    def post(
        self,
        text: str,
        level: StatusLevel = StatusLevel.INFO,
        duration: Optional[float] = None,
    ) -> StatusMessage:
        lifetime = self.duration if duration is None else duration
        self._message = StatusMessage(text=text, level=level, expires_at=self._clock() + lifetime)
        return self._message

    @property
    def current(self) -> Optional[StatusMessage]:
        """The live message, or None once it has expired."""
        if self._message is not None and self._clock() >= self._message.expires_at:
            self._message = None
        return self._message

    @property
    def text(self) -> str:
        message = self.current
        return message.text if message else ""

    def clear(self) -> None:
        self._message = None

"""
Conversation state for the coding agent.
Holds the transcript, the interruption flags and state persistence.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from messages import ConversationMessage

logger = logging.getLogger(__name__)


class ContextMixin:
    """Mixin providing the transcript and turn state."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Append-only, except the message currently being streamed
        self.messages: List[ConversationMessage] = []

        # Soft interrupt, checked at loop boundaries
        self._interrupted: bool = False
        # Hard abort, handed to in-flight HTTP calls
        self._abort_event: Optional[asyncio.Event] = None

        self._busy: bool = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def interrupt(self) -> None:
        """Stop at the next loop boundary. A running tool finishes first."""
        self._interrupted = True

    def abort(self) -> None:
        """Interrupt and cancel the in-flight HTTP request."""
        self._interrupted = True
        if self._abort_event is not None:
            self._abort_event.set()

    def _reset_turn_state(self) -> None:
        self._interrupted = False
        self._abort_event = asyncio.Event()

    def _append(self, message: ConversationMessage) -> ConversationMessage:
        self.messages.append(message)
        return message

    def clear(self) -> None:
        """Start a fresh conversation."""
        self.messages = []
        self._interrupted = False

    # ------------------------------------------------------------------
    # State Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages if not m.is_streaming],
            "mode": self.modes.current_mode,
            "model": self.model,
        }

    def from_dict(self, data: Dict[str, Any]) -> None:
        """Restore state. Unknown keys are ignored."""
        if not isinstance(data, dict):
            return
        raw = data.get("messages")
        if isinstance(raw, list):
            self.messages = [ConversationMessage.from_dict(m) for m in raw if isinstance(m, dict)]
        mode = data.get("mode")
        if isinstance(mode, str) and mode:
            self.modes.set_mode(mode)
        model = data.get("model")
        if isinstance(model, str) and model:
            self.model = model
        logger.info(f"Restored {len(self.messages)} messages")

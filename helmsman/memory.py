"""Bounded conversation memory with a pinned system message."""

import threading
from collections.abc import Iterable

from helmsman.llm.types import Message, Role


class ConversationMemory:
    """Ordered chat history capped at ``max_size`` messages.

    A system message, once set, always sits at index 0 and is never
    trimmed; it counts toward the cap. When the cap is exceeded the oldest
    non-system messages are dropped first, along with any tool results left
    at the front without their assistant turn. All methods are serialized by an
    internal lock.
    """

    def __init__(self, max_size: int = 100, system_prompt: str | None = None):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._messages: list[Message] = []
        self._lock = threading.RLock()
        if system_prompt:
            self.set_system_prompt(system_prompt)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def _has_system(self) -> bool:
        return bool(self._messages) and self._messages[0].role == Role.SYSTEM

    def _trim(self) -> None:
        overflow = len(self._messages) - self.max_size
        if overflow <= 0:
            return
        start = 1 if self._has_system() else 0
        del self._messages[start:start + overflow]
        # A tool result may not outlive the assistant turn that requested it.
        while len(self._messages) > start and self._messages[start].role == Role.TOOL:
            del self._messages[start]

    def append(self, message: Message) -> None:
        with self._lock:
            if message.role == Role.SYSTEM:
                self._set_system(message.content or "")
                return
            self._messages.append(message)
            self._trim()

    def extend(self, messages: Iterable[Message]) -> None:
        with self._lock:
            for message in messages:
                self.append(message)

    def snapshot(self) -> tuple[Message, ...]:
        """Immutable copy of the current history."""
        with self._lock:
            return tuple(self._messages)

    def replace(self, messages: Iterable[Message]) -> None:
        """Atomically swap in ``messages``; a system message is moved to the front."""
        incoming = list(messages)
        system = [m for m in incoming if m.role == Role.SYSTEM]
        rest = [m for m in incoming if m.role != Role.SYSTEM]
        with self._lock:
            self._messages = system[-1:] + rest
            self._trim()

    def truncate(self, length: int) -> None:
        """Drop everything after the first ``length`` messages."""
        with self._lock:
            del self._messages[max(length, 0):]

    @property
    def system_prompt(self) -> str | None:
        with self._lock:
            return self._messages[0].content if self._has_system() else None

    def _set_system(self, text: str) -> None:
        system = Message.system(text)
        if self._has_system():
            self._messages[0] = system
        else:
            self._messages.insert(0, system)
            self._trim()

    def set_system_prompt(self, text: str) -> None:
        """Set or update the pinned system message."""
        with self._lock:
            self._set_system(text)

    def clear(self) -> None:
        """Keep the system message, drop everything else."""
        with self._lock:
            self._messages = self._messages[:1] if self._has_system() else []

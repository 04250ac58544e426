"""Named operations an external interpreter can invoke; no command text is parsed here."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence

from .errors import CommandError

logger = logging.getLogger(__name__)

CommandHandler = Callable[[List[str]], Optional[str]]


class CommandRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[str, CommandHandler] = {}

    def register(self, name: str, handler: CommandHandler) -> None:
        key = name.strip().lower()
        if key in self._handlers:
            logger.debug("Replacing command %s", key)
        self._handlers[key] = handler

    def is_registered(self, name: str) -> bool:
        return name.strip().lower() in self._handlers

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def run(self, name: str, args: Sequence[str] = ()) -> Optional[str]:
        """Invoke ``name``; bad arguments are logged and the command does nothing."""

        key = name.strip().lower()
        handler = self._handlers.get(key)
        if handler is None:
            raise CommandError(f"unknown command: {name}")
        try:
            return handler(list(args))
        except (CommandError, ValueError) as exc:
            logger.warning("%s: %s", key, exc)
            return None


__all__ = ["CommandRegistry", "CommandHandler"]

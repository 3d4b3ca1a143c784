"""User-facing channels.

A channel turns platform traffic into ``IncomingMessage`` objects and hands
them to a ``MessageHandler``, which answers with the reply text.
"""

from typing import Awaitable, Callable

from shared.models import IncomingMessage

MessageHandler = Callable[[IncomingMessage], Awaitable[str]]

__all__ = ["MessageHandler"]

"""A fixed pool of tokens limiting how many tasks run at once."""

from __future__ import annotations

import queue


class Token:
    """Permission to keep on running."""


class TokenLimiter:
    """Hands out at most ``count`` tokens at a time."""

    def __init__(self, count: int) -> None:
        if count < 0:
            raise ValueError("token count must not be negative")
        self.count = count
        self._tokens: queue.Queue[Token] = queue.Queue(maxsize=count)
        for _ in range(count):
            self._tokens.put_nowait(Token())

    def get(self) -> Token:
        """Take a token, blocking until one is available."""
        return self._tokens.get()

    def put(self, token: Token) -> None:
        """Return a token to the pool."""
        self._tokens.put(token)
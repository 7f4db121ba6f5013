"""
Cooperative cancellation tokens.

Every asynchronous step of playback receives a token and checks it after
each await before touching shared state:

    data = await synthesizer.synthesize(text, voice)
    if token.cancelled:
        return              # result belongs to a cancelled session

Tokens form a tree. Cancelling a parent cancels all of its children, which
lets the controller keep one token for the whole session (cancelled on
stop/teardown) and a child per playback attempt (cancelled on next/seek).
"""
from __future__ import annotations

from typing import List, Optional


class OperationCancelled(Exception):
    """Raised by CancellationToken.raise_if_cancelled()."""


class CancellationToken:
    def __init__(self, name: str = "", parent: Optional["CancellationToken"] = None):
        self.name = name
        self._cancelled = False
        self._children: List[CancellationToken] = []
        self._parent: Optional[CancellationToken] = None
        if parent is not None:
            if parent.cancelled:
                self._cancelled = True
            else:
                self._parent = parent
                parent._children.append(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel this token and every descendant. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        children, self._children = self._children, []
        for child in children:
            child._parent = None
            child.cancel()
        # a cancelled child no longer needs its parent to reach it
        parent, self._parent = self._parent, None
        if parent is not None and self in parent._children:
            parent._children.remove(self)

    def child(self, name: str = "") -> "CancellationToken":
        return CancellationToken(name=name or f"{self.name}/child", parent=self)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self.name or "cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken({self.name!r}, cancelled={self._cancelled})"

"""Uniform error mapping for collaborator calls."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

from ctxforge.exceptions import CollaboratorError, CtxForgeError

T = TypeVar("T")


async def guarded(collaborator: str, awaitable: Awaitable[T]) -> T:
    """Await a collaborator call, re-raising foreign failures as CollaboratorError."""
    try:
        return await awaitable
    except CtxForgeError:
        raise
    except Exception as e:
        raise CollaboratorError(collaborator, str(e) or type(e).__name__) from e

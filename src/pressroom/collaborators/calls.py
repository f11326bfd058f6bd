"""Bounded-timeout wrapper for every outbound collaborator call."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from pressroom.infrastructure.errors import CollaboratorError, CollaboratorTimeout

T = TypeVar("T")


async def call_collaborator(name: str, call: Awaitable[T], timeout_s: float) -> T:
    """Await ``call`` with a timeout, folding every failure into CollaboratorError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_s)
    except asyncio.TimeoutError:
        raise CollaboratorTimeout(name, timeout_s) from None
    except CollaboratorError:
        raise
    except Exception as err:
        raise CollaboratorError(name, str(err) or type(err).__name__) from err

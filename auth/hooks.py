"""
auth/hooks.py -- Lifecycle extension points.

AuthHooks is a fixed set of optional slots. Each slot takes a plain function
or a coroutine function; both are supported and results are awaited in order
before the response is produced.

  on_register(identity)            -> ignored
  on_login(identity)               -> dict of extension claims, or None
  on_logout(principal | None)      -> ignored
  on_verify(identity)              -> ignored
  on_error(HookErrorContext)       -> ignored

Hooks are best-effort enrichers. A failing hook is logged and never changes
the outcome of the workflow that fired it. on_login's return value is only
used when it is a dict with string keys that encodes to JSON.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger("lightauth.hooks")

# Strong references to on_error tasks scheduled from synchronous code.
_pending: set = set()

HookFn = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass
class HookErrorContext:
    """Argument passed to on_error."""

    type: str  # "setup", "register", "login", "logout", "verify", "reset"
    error: BaseException
    request: Any = None


@dataclass
class AuthHooks:
    on_register: Optional[HookFn] = None
    on_login: Optional[HookFn] = None
    on_logout: Optional[HookFn] = None
    on_verify: Optional[HookFn] = None
    on_error: Optional[HookFn] = None


async def call_hook(name: str, fn: Optional[HookFn], *args: Any) -> Any:
    """Invoke a hook slot; return its result, or None if unset or failing."""
    if fn is None:
        return None
    try:
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception:
        logger.exception("Hook %s raised; continuing", name)
        return None


async def report_error(hooks: AuthHooks, kind: str, error: BaseException, request: Any = None) -> None:
    """Fire on_error. Its own failures are swallowed so the error response still goes out."""
    await call_hook("on_error", hooks.on_error, HookErrorContext(type=kind, error=error, request=request))


def report_setup_error(hooks: AuthHooks, error: BaseException) -> None:
    """Fire on_error(type="setup") from synchronous application assembly.

    With no event loop running (the usual case at import time), a coroutine
    hook runs to completion on a private loop. Inside a running loop it is
    scheduled as a task instead.
    """
    if hooks.on_error is None:
        return
    pending = call_hook("on_error", hooks.on_error, HookErrorContext(type="setup", error=error))
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(pending)
        return
    task = loop.create_task(pending)
    _pending.add(task)
    task.add_done_callback(_pending.discard)

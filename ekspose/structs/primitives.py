"""
Flags and toggles for signalling between the controller's tasks.

A flag is anything that can be raised once and awaited: the embedding
application passes it to stop the controller (the stop-flag) or to be
notified when the controller is ready to serve (the ready-flag).
Both asyncio and threading primitives are accepted, so that the controller
can be controlled from another thread.
"""
import asyncio
import concurrent.futures
import threading
from typing import Any, Optional, Union

from ekspose.utilities import aiotasks

Flag = Union[aiotasks.Future, asyncio.Event, concurrent.futures.Future, threading.Event]


async def wait_flag(
        flag: Optional[Flag],
) -> Any:
    """
    Wait until the flag is raised, and return its value if it has one.

    The blocking primitives are awaited in the default executor.
    No flag means nothing to wait for.
    """
    if flag is None:
        return None
    if isinstance(flag, asyncio.Future):
        return await flag
    if isinstance(flag, asyncio.Event):
        await flag.wait()
        return None

    loop = asyncio.get_running_loop()
    if isinstance(flag, concurrent.futures.Future):
        return await loop.run_in_executor(None, flag.result)
    if isinstance(flag, threading.Event):
        await loop.run_in_executor(None, flag.wait)
        return None
    raise TypeError(f"Unsupported type of a flag: {flag!r}")


async def raise_flag(
        flag: Optional[Flag],
) -> None:
    """ Raise the flag, unless it is raised already. No flag means nothing to raise. """
    if flag is None:
        pass
    elif isinstance(flag, (asyncio.Future, concurrent.futures.Future)):
        if not flag.done():
            flag.set_result(None)
    elif isinstance(flag, (asyncio.Event, threading.Event)):
        flag.set()
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


class Toggle:
    """
    A two-way state that can be awaited until it is on, or until it is off.

    An :class:`asyncio.Event` can only be awaited until it is set; the toggle
    keeps a pair of them, exactly one of which is set at any time.

    The name is used only in the reprs, e.g. ``<Toggle: deployments synced: on>``.
    """

    def __init__(
            self,
            __state: bool = False,
            *,
            name: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._name = name
        self._on = asyncio.Event()
        self._off = asyncio.Event()
        self._switch(bool(__state))

    def __repr__(self) -> str:
        state = 'on' if self.is_on() else 'off'
        prefix = f'{self._name}: ' if self._name is not None else ''
        return f'<{self.__class__.__name__}: {prefix}{state}>'

    def __bool__(self) -> bool:
        raise NotImplementedError  # ambiguous: use is_on() or is_off() explicitly

    @property
    def name(self) -> Optional[str]:
        return self._name

    def is_on(self) -> bool:
        return self._on.is_set()

    def is_off(self) -> bool:
        return self._off.is_set()

    def _switch(self, state: bool) -> None:
        wanted, other = (self._on, self._off) if state else (self._off, self._on)
        other.clear()
        wanted.set()

    async def turn_to(self, __state: bool) -> None:
        """ Switch the state and release the tasks waiting for it. """
        self._switch(bool(__state))

    async def wait_for(self, __state: bool) -> None:
        """ Wait until the toggle is in the requested state; instantly if it is so already. """
        await (self._on if __state else self._off).wait()

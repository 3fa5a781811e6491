"""Cached ledger view state and the fixed-interval refresh loop."""

import asyncio
import enum
import logging
import time
from typing import Any, Callable

from .errors import LedgerReadError

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 30.0
DEFAULT_REFRESH_INTERVAL = 30.0


class View(enum.Enum):
    QUIZ_FEE = "quiz_fee"
    USER_INFO = "user_info"
    CONTRACT_STATS = "contract_stats"
    ACTIVE_SESSIONS = "active_sessions"
    USER_STATS = "user_stats"
    BALANCE = "balance"


_NEEDS_USER = {View.USER_INFO, View.USER_STATS, View.BALANCE}
_NEEDS_TOKEN = {View.CONTRACT_STATS, View.BALANCE}


class LedgerStateCache:
    """Latest ledger reads for one account.

    Each view is a whole record from a single read and is only ever replaced,
    never patched. A view older than ``max_age`` seconds, or explicitly
    invalidated, is stale: ``get`` re-reads it, ``peek`` still returns it.
    """

    def __init__(self, ledger, user: str | None = None, token: str | None = None,
                 max_age: float = DEFAULT_MAX_AGE,
                 clock: Callable[[], float] = time.monotonic):
        self.ledger = ledger
        self.user = user
        self.token = token
        self.max_age = max_age
        self.clock = clock
        self._entries: dict[View, tuple[Any, float]] = {}
        self._invalid: set[View] = set()

    def set_user(self, user: str | None) -> None:
        if user != self.user:
            self.user = user
            self.invalidate()
            self._entries.clear()

    def set_token(self, token: str | None) -> None:
        if token != self.token:
            self.token = token
            for view in _NEEDS_TOKEN:
                self._entries.pop(view, None)

    def available(self, view: View) -> bool:
        if view in _NEEDS_USER and not self.user:
            return False
        if view in _NEEDS_TOKEN and not self.token:
            return False
        return True

    def peek(self, view: View):
        entry = self._entries.get(view)
        return entry[0] if entry else None

    def is_stale(self, view: View) -> bool:
        entry = self._entries.get(view)
        if entry is None or view in self._invalid:
            return True
        return self.clock() - entry[1] >= self.max_age

    def invalidate(self, *views: View) -> None:
        self._invalid.update(views or View)

    async def get(self, view: View):
        if self.is_stale(view):
            await self.refresh(view)
        return self.peek(view)

    async def refresh(self, *views: View) -> set[View]:
        """Re-read the given views (all when empty); returns those updated."""
        updated = set()
        for view in views or View:
            if not self.available(view):
                continue
            try:
                value = await self._read(view)
            except LedgerReadError as e:
                logger.warning("Failed to refresh %s: %s", view.value, e)
                continue
            self._entries[view] = (value, self.clock())
            self._invalid.discard(view)
            updated.add(view)
        return updated

    async def _read(self, view: View):
        if view is View.QUIZ_FEE:
            return await self.ledger.quiz_fee()
        if view is View.USER_INFO:
            return await self.ledger.get_user_info(self.user)
        if view is View.CONTRACT_STATS:
            return await self.ledger.get_contract_stats(self.token)
        if view is View.ACTIVE_SESSIONS:
            return await self.ledger.get_active_session_ids()
        if view is View.USER_STATS:
            return await self.ledger.get_user_stats(self.user)
        if view is View.BALANCE:
            return await self.ledger.balance_of(self.token, self.user)
        raise ValueError(f"Unknown view: {view}")

    @property
    def quiz_fee(self):
        return self.peek(View.QUIZ_FEE)

    @property
    def user_info(self):
        return self.peek(View.USER_INFO)

    @property
    def contract_stats(self):
        return self.peek(View.CONTRACT_STATS)

    @property
    def active_sessions(self) -> list[str]:
        return self.peek(View.ACTIVE_SESSIONS) or []

    @property
    def user_stats(self):
        return self.peek(View.USER_STATS)

    @property
    def balance(self):
        return self.peek(View.BALANCE)


class RefreshLoop:
    """Re-reads the polled views every ``interval`` seconds while a user is set."""

    POLLED_VIEWS = (View.USER_INFO, View.CONTRACT_STATS, View.ACTIVE_SESSIONS)

    def __init__(self, cache: LedgerStateCache, interval: float = DEFAULT_REFRESH_INTERVAL,
                 views: tuple[View, ...] = POLLED_VIEWS,
                 on_refresh: Callable[[set], None] | None = None):
        self.cache = cache
        self.interval = interval
        self.views = views
        self.on_refresh = on_refresh
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            if self.cache.user:
                updated = await self.cache.refresh(*self.views)
                if self.on_refresh is not None:
                    try:
                        self.on_refresh(updated)
                    except Exception:
                        logger.exception("Refresh callback failed")
            await asyncio.sleep(self.interval)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc):
        await self.stop()

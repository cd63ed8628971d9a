import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional

from .listings import Listing, search_listings


logger = logging.getLogger(__name__)


class Debouncer:
    """Run ``callback`` once the calls have been quiet for ``delay`` seconds.

    Every call cancels the pending timer and schedules a new one on the event
    loop, so a burst of calls produces a single invocation with the arguments
    of the last call.
    """

    def __init__(self, callback: Callable[..., Any], delay: float = 0.3, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._callback = callback
        self.delay = delay
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, args)

    def _fire(self, args: tuple) -> None:
        self._handle = None
        self._callback(*args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class DebouncedSearch:
    """Search over a listing source that recomputes after typing pauses."""

    def __init__(
        self,
        source: Callable[[], Iterable[Listing]],
        on_results: Callable[[List[Listing]], None],
        delay: float = 0.3,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._source = source
        self._on_results = on_results
        self._debouncer = Debouncer(self._run, delay=delay, loop=loop)
        self.term = ""
        self.results: List[Listing] = []
        self.error: Optional[str] = None
        self.runs = 0

    def set_term(self, term: str) -> None:
        self.term = term
        self._debouncer(term)

    def _run(self, term: str) -> None:
        self.runs += 1
        self.error = None
        if not term.strip():
            self.results = []
        else:
            try:
                self.results = search_listings(self._source(), term)
            except Exception as e:
                logger.error(f"Error searching listings: {e}")
                self.error = "Search failed"
                self.results = []
        self._on_results(self.results)

    def clear(self) -> None:
        self._debouncer.cancel()
        self.term = ""
        self.results = []
        self.error = None

    def close(self) -> None:
        self._debouncer.cancel()

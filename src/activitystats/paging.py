"""Lazy page-at-a-time sequences over a ranked query, cached per parameter set."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import CancelledError, Executor, Future
from dataclasses import dataclass
from typing import Any, Callable, Iterator

logger = logging.getLogger("activitystats.paging")

# loader(offset, limit) -> rows
Loader = Callable[[int, int], list]


class SourceQueryError(Exception):
    """Raised when a log store fails while loading a page."""
    pass


class QueryCancelledError(Exception):
    """Raised when a sequence was superseded before its page landed."""
    pass


@dataclass(frozen=True)
class Page:
    index: int
    rows: tuple
    has_next: bool


def _completed(result: Any = None, error: BaseException | None = None) -> Future:
    future: Future = Future()
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
    return future


class PagedSequence:
    """Pages of one (category, source, window) query, produced on demand.

    Nothing is queried until a page is requested. Loaded pages are kept in
    an LRU of ``max_cached_pages`` entries (0 keeps everything). Loads run
    on ``executor`` and hold ``query_lock`` for the duration of the store
    call, so one category never has two queries running at once even across
    successive sequences. A load checks ``is_current`` before and after the
    store call; if the sequence has been superseded its rows are dropped and
    the caller gets QueryCancelledError.

    A store failure terminates the sequence: the error is kept and returned
    for every later fetch.
    """

    def __init__(
        self,
        loader: Loader | None,
        page_size: int,
        executor: Executor | None = None,
        key: Any = None,
        is_current: Callable[[], bool] | None = None,
        query_lock: threading.Lock | None = None,
        max_cached_pages: int = 0,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.key = key
        self.page_size = page_size
        self._loader = loader
        self._executor = executor
        self._is_current = is_current or (lambda: True)
        self._query_lock = query_lock or threading.Lock()
        self._max_cached_pages = max_cached_pages
        self._lock = threading.Lock()
        self._pages: OrderedDict[int, Page] = OrderedDict()
        self._pending: dict[int, Future] = {}
        self._cancelled = False
        self._error: SourceQueryError | None = None

    @classmethod
    def empty(cls, page_size: int, key: Any = None) -> "PagedSequence":
        """A sequence that is already terminated and never queries anything."""
        return cls(None, page_size, key=key)

    @classmethod
    def failed(cls, page_size: int, key: Any, cause: Exception) -> "PagedSequence":
        """A sequence that could not be set up; every fetch reports ``cause``."""
        seq = cls(lambda offset, limit: [], page_size, key=key)
        seq._error = SourceQueryError(f"Query for {key} failed: {cause}")
        seq._error.__cause__ = cause
        return seq

    @property
    def is_empty(self) -> bool:
        return self._loader is None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> SourceQueryError | None:
        return self._error

    @property
    def terminated(self) -> bool:
        return self._loader is None or self._cancelled or self._error is not None

    @property
    def cached_pages(self) -> list[int]:
        with self._lock:
            return list(self._pages)

    def fetch(self, index: int) -> Future:
        """Return a Future for page ``index``, loading it if needed."""
        if index < 0:
            raise ValueError("page index must be non-negative")
        with self._lock:
            if self._loader is None:
                return _completed(Page(index=index, rows=(), has_next=False))
            if self._cancelled:
                return _completed(error=QueryCancelledError(f"{self.key} was superseded"))
            if self._error is not None:
                return _completed(error=self._error)
            page = self._pages.get(index)
            if page is not None:
                self._pages.move_to_end(index)
                return _completed(page)
            future = self._pending.get(index)
            if future is None:
                future = self._executor.submit(self._load, index)
                self._pending[index] = future
            return future

    def get_page(self, index: int, timeout: float | None = None) -> Page:
        """Blocking form of fetch()."""
        try:
            return self.fetch(index).result(timeout)
        except CancelledError:
            raise QueryCancelledError(f"{self.key} was superseded") from None

    def __iter__(self) -> Iterator:
        index = 0
        while True:
            page = self.get_page(index)
            yield from page.rows
            if not page.has_next:
                return
            index += 1

    def cancel(self) -> None:
        """Drop cached pages and abandon outstanding loads. Safe to call twice."""
        with self._lock:
            self._cancelled = True
            self._pages.clear()
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()

    def _live_locked(self) -> bool:
        return not self._cancelled and self._is_current()

    def _load(self, index: int) -> Page:
        with self._query_lock:
            with self._lock:
                if not self._live_locked():
                    self._pending.pop(index, None)
                    raise QueryCancelledError(f"{self.key} was superseded")
            try:
                rows = self._loader(index * self.page_size, self.page_size + 1)
            except Exception as e:
                with self._lock:
                    self._pending.pop(index, None)
                    if not self._live_locked():
                        raise QueryCancelledError(f"{self.key} was superseded") from e
                    self._error = SourceQueryError(f"Query for {self.key} failed: {e}")
                    error = self._error
                logger.warning("Query for %s page %d failed: %s", self.key, index, e)
                raise error from e

        page = Page(
            index=index,
            rows=tuple(rows[:self.page_size]),
            has_next=len(rows) > self.page_size,
        )
        with self._lock:
            self._pending.pop(index, None)
            if not self._live_locked():
                logger.debug("Dropping stale page %d of %s", index, self.key)
                raise QueryCancelledError(f"{self.key} was superseded")
            self._pages[index] = page
            if self._max_cached_pages:
                while len(self._pages) > self._max_cached_pages:
                    self._pages.popitem(last=False)
        return page

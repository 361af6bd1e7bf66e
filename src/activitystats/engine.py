"""Per-category paged statistics that follow the selected window and routing."""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from activitystats.categories import StatisticsType
from activitystats.config import DEFAULT_PAGE_SIZE, Config
from activitystats.paging import PagedSequence
from activitystats.policy import BypassProbe
from activitystats.routing import Source, route
from activitystats.time_window import TimeCategory, TimeWindow, TimeWindowStore

logger = logging.getLogger("activitystats.engine")

Listener = Callable[[PagedSequence], None]


@dataclass(frozen=True)
class QueryKey:
    category: StatisticsType
    source: Source
    window: TimeWindow


class _CategoryStream:
    """Mutable per-category state. Guarded by the engine lock."""

    def __init__(self, category: StatisticsType) -> None:
        self.category = category
        self.version = 0
        self.wanted = False
        self.probe_token = 0
        self.key: QueryKey | None = None
        self.sequence: PagedSequence | None = None
        # Held by page loads so a category never runs two store queries at once
        self.query_lock = threading.Lock()
        self.listeners: list[Listener] = []


class StatisticsEngine:
    """Serves ranked pages for each StatisticsType from the right log store.

    Every parameter change (window, activation, bypass signal, mode) goes
    through one engine lock and bumps the affected category's version.
    Page loads capture the version they were started for and drop their
    rows if it moved on, so a superseded window never leaks into the new
    sequence. Store queries run on a worker pool. The bypass probe runs on
    its own single thread, which also delivers the resulting notification,
    so a listener may block on a page load without starving the pool.
    """

    def __init__(
        self,
        connection_store,
        dns_store,
        mode_provider,
        bypass_policy=None,
        window_store: TimeWindowStore | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_cached_pages: int = 10,
        workers: int = 4,
        executor: Executor | None = None,
    ) -> None:
        self._sources = {
            Source.CONNECTION_LOG: connection_store,
            Source.RESOLUTION_LOG: dns_store,
        }
        self._mode = mode_provider
        self._probe = None
        self._probe_executor = None
        if bypass_policy is not None:
            self._probe = BypassProbe(bypass_policy)
            self._probe_executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="activitystats-probe"
            )
        self.window_store = window_store or TimeWindowStore()
        self.page_size = page_size
        self.max_cached_pages = max_cached_pages
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="activitystats"
        )
        self._lock = threading.RLock()
        self._streams = {category: _CategoryStream(category) for category in StatisticsType}
        self._bypass_signal: bool | None = None
        self._signal_token = 0
        self.window_store.add_listener(self._on_window_changed)

    @classmethod
    def from_config(
        cls, config: Config, connection_store, dns_store, bypass_policy=None, **kwargs
    ) -> "StatisticsEngine":
        return cls(
            connection_store,
            dns_store,
            config,
            bypass_policy=bypass_policy,
            page_size=config.page_size,
            max_cached_pages=config.max_cached_pages,
            workers=config.workers,
            **kwargs,
        )

    @property
    def bypass_signal(self) -> bool | None:
        """Latest known bypass signal; None until the first probe lands."""
        return self._bypass_signal

    def select_time_category(self, time_category: TimeCategory) -> TimeWindow:
        return self.window_store.select(time_category)

    def activate(self, category: StatisticsType) -> Future | None:
        """(Re)arm a category's stream.

        Most-blocked-domains first probes the bypass policy on the probe
        thread and is armed when the result lands; the probe Future is
        returned. Other categories are armed immediately and None is
        returned.
        """
        with self._lock:
            stream = self._streams[category]
            self._invalidate(stream)
            if category is StatisticsType.MOST_BLOCKED_DOMAINS and self._probe is not None:
                stream.wanted = False
                stream.probe_token += 1
                token = stream.probe_token
                logger.debug("Probing bypass policy before arming %s", category.value)
                return self._probe_executor.submit(self._probe_and_arm, token)
            stream.wanted = True
        self._notify(category)
        return None

    def deactivate(self, category: StatisticsType) -> None:
        with self._lock:
            stream = self._streams[category]
            stream.wanted = False
            # a probe still in flight must not arm the stream
            stream.probe_token += 1
            self._invalidate(stream)
        self._notify(category)

    def is_active(self, category: StatisticsType) -> bool:
        return self._streams[category].wanted

    def current_key(self, category: StatisticsType) -> QueryKey | None:
        return self._streams[category].key

    def pages(self, category: StatisticsType) -> PagedSequence:
        """Return the category's sequence, rebuilding it if its key changed.

        Routing is re-derived on every call, so a mode change is picked up
        on the next access. An inactive category or a missing/invalid
        window gives an empty, terminated sequence.
        """
        with self._lock:
            stream = self._streams[category]
            window = self.window_store.window
            if not stream.wanted or window is None or not window.is_valid:
                if stream.sequence is not None:
                    self._invalidate(stream)
                return PagedSequence.empty(self.page_size)

            key = self._key_for(category, window)
            if stream.key != key:
                if stream.key is not None:
                    logger.info(
                        "%s now reads from %s", category.value, key.source.value
                    )
                self._invalidate(stream)
                stream.key = key
                stream.sequence = self._build(stream, key)
            return stream.sequence

    def subscribe(self, category: StatisticsType, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new sequence each time the stream is re-established."""
        with self._lock:
            self._streams[category].listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._streams[category].listeners
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def refresh_routing(self) -> list[StatisticsType]:
        """Re-route active categories after an external mode change.

        Returns the categories whose source changed.
        """
        changed = []
        with self._lock:
            for stream in self._streams.values():
                if not stream.wanted or stream.key is None:
                    continue
                key = self._key_for(stream.category, stream.key.window)
                if key != stream.key:
                    self._invalidate(stream)
                    changed.append(stream.category)
        for category in changed:
            self._notify(category)
        return changed

    def close(self) -> None:
        """Cancel every sequence and stop the worker pool if we created it."""
        self.window_store.remove_listener(self._on_window_changed)
        with self._lock:
            for stream in self._streams.values():
                stream.wanted = False
                stream.probe_token += 1
                self._invalidate(stream)
        if self._probe_executor is not None:
            self._probe_executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _key_for(self, category: StatisticsType, window: TimeWindow) -> QueryKey:
        source = route(
            category,
            self._mode.is_name_resolution_only_mode(),
            self._bypass_signal,
        )
        return QueryKey(category=category, source=source, window=window)

    def _build(self, stream: _CategoryStream, key: QueryKey) -> PagedSequence:
        version = stream.version
        try:
            loader = self._sources[key.source].query(key.category, key.window.start, key.window.end)
        except Exception as e:
            logger.warning(
                "Could not query %s for %s: %s", key.source.value, key.category.value, e
            )
            return PagedSequence.failed(self.page_size, key, e)
        logger.debug("New sequence for %s from %s", key.category.value, key.source.value)
        return PagedSequence(
            loader,
            self.page_size,
            self._executor,
            key=key,
            is_current=lambda: stream.wanted and stream.version == version,
            query_lock=stream.query_lock,
            max_cached_pages=self.max_cached_pages,
        )

    def _invalidate(self, stream: _CategoryStream) -> None:
        stream.version += 1
        stream.key = None
        if stream.sequence is not None:
            stream.sequence.cancel()
            stream.sequence = None

    def _on_window_changed(self, window: TimeWindow) -> None:
        with self._lock:
            active = [s.category for s in self._streams.values() if s.wanted]
            for category in active:
                self._invalidate(self._streams[category])
        for category in active:
            self._notify(category)

    def _probe_and_arm(self, token: int) -> bool:
        bypassed = self._probe.run()
        category = StatisticsType.MOST_BLOCKED_DOMAINS
        with self._lock:
            stream = self._streams[category]
            if token > self._signal_token:
                self._signal_token = token
                self._bypass_signal = bypassed
            if token != stream.probe_token:
                logger.debug("Ignoring bypass result for superseded activation of %s", category.value)
                return bypassed
            stream.wanted = True
            self._invalidate(stream)
        self._notify(category)
        return bypassed

    def _notify(self, category: StatisticsType) -> None:
        with self._lock:
            listeners = list(self._streams[category].listeners)
        if not listeners:
            return
        try:
            sequence = self.pages(category)
        except Exception as e:
            logger.warning("Could not rebuild %s: %s", category.value, e)
            return
        for listener in listeners:
            try:
                listener(sequence)
            except Exception as e:
                logger.warning("Listener for %s failed: %s", category.value, e)

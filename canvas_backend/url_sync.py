"""
URL State Synchronizer - keeps the whole canvas in a shareable URL parameter.

Write path: every store notification restarts a debouncer; when it fires
the snapshot is encoded and, if the token differs from the last one written,
the query parameter is replaced in place (no new history entry).

Read path: on start and on every external URL change the parameter is read;
a token equal to the last applied or last written one is ignored. A token
that fails to decode (or decodes to an unusable snapshot) is logged and
stripped from the URL, and the store is left untouched.
"""

from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from canvas_core.codec import decode_snapshot, encode_snapshot
from canvas_core.errors import DecodeError
from canvas_core.logging import get_logger

from .scheduler import Debouncer, Scheduler
from .shape_store import ChangeSource, ShapeStore, StoreChange, Subscription

logger = get_logger("url_sync")

DEFAULT_URL_PARAM = "canvas"
DEFAULT_WRITE_DELAY = 0.5


class UrlLocation:
    """
    The address bar of one client: a current URL plus a history stack.

    replace_params() edits the current entry in place; navigate() is an
    external change (user edit, back/forward, pasted link) and notifies
    on_change listeners.
    """

    def __init__(self, url: str = "http://localhost/"):
        self._history: list[str] = [url]
        self._listeners: list[Callable[[str], None]] = []

    @property
    def url(self) -> str:
        return self._history[-1]

    @property
    def history(self) -> list[str]:
        return list(self._history)

    def get_param(self, name: str) -> Optional[str]:
        query = urlsplit(self.url).query
        for key, value in parse_qsl(query, keep_blank_values=True):
            if key == name:
                return value
        return None

    def _with_params(self, updates: dict[str, Optional[str]]) -> str:
        parts = urlsplit(self.url)
        params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in updates]
        params.extend((k, v) for k, v in updates.items() if v is not None)
        return urlunsplit(parts._replace(query=urlencode(params)))

    def replace_params(self, updates: dict[str, Optional[str]]):
        """Set (or, with None, remove) query parameters without adding history."""
        self._history[-1] = self._with_params(updates)

    def push_params(self, updates: dict[str, Optional[str]]):
        self._history.append(self._with_params(updates))

    def navigate(self, url: str):
        """Change the URL from outside the synchronizer."""
        self._history.append(url)
        for listener in list(self._listeners):
            listener(url)

    def on_change(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Register a listener for external changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe


class UrlStateSynchronizer:
    """
    Two-way sync between a ShapeStore and a URL parameter.

    Usage:
        sync = UrlStateSynchronizer(store, location, scheduler)
        sync.start()      # applies the parameter, then starts listening
        ...
        sync.dispose()
    """

    def __init__(
        self,
        store: ShapeStore,
        location: UrlLocation,
        scheduler: Scheduler,
        param: str = DEFAULT_URL_PARAM,
        write_delay: float = DEFAULT_WRITE_DELAY,
    ):
        self._store = store
        self._location = location
        self._param = param
        self._writer = Debouncer(scheduler, write_delay, self.write_now)
        self._subscription: Optional[Subscription] = None
        self._unsubscribe_location: Optional[Callable[[], None]] = None
        self.last_written: Optional[str] = None
        self.last_applied: Optional[str] = None
        self.write_count = 0

    @property
    def param(self) -> str:
        return self._param

    @property
    def write_pending(self) -> bool:
        return self._writer.pending

    def start(self):
        """Apply the current URL, then follow store and URL changes."""
        if self._subscription is not None:
            return
        self.sync_from_url()
        self._subscription = self._store.listen(self._on_store_change)
        self._unsubscribe_location = self._location.on_change(self._on_url_change)

    # --- Write path ---

    def _on_store_change(self, change: StoreChange):
        self._writer.schedule()

    def write_now(self) -> bool:
        """
        Encode the store and write it to the URL if it changed.

        Returns True if the URL was written.
        """
        self._writer.cancel()
        token = encode_snapshot(self._store.get_snapshot())
        if token == self.last_written or token == self._location.get_param(self._param):
            self.last_written = token
            return False
        self._location.replace_params({self._param: token})
        self.last_written = token
        self.write_count += 1
        logger.info("Wrote canvas state to URL (%d chars)", len(token))
        return True

    def flush(self) -> bool:
        """Run a pending write immediately."""
        return self._writer.flush()

    # --- Read path ---

    def _on_url_change(self, url: str):
        self.sync_from_url()

    def sync_from_url(self) -> bool:
        """
        Load the store from the URL parameter.

        Returns True if a snapshot was applied. Never raises for bad tokens.
        """
        token = self._location.get_param(self._param)
        if not token:
            return False
        if token == self.last_applied or token == self.last_written:
            return False

        try:
            snapshot = decode_snapshot(token)
            self._store.load_snapshot(snapshot, source=ChangeSource.REMOTE)
        except DecodeError as e:
            logger.error("Discarding invalid '%s' URL parameter: %s", self._param, e, exc_info=True)
            self._location.replace_params({self._param: None})
            logger.warning("Stripped '%s' parameter from URL", self._param)
            return False

        self.last_applied = token
        # The store now matches the token; nothing to write back
        self.last_written = token
        self._writer.cancel()
        logger.info("Applied canvas state from URL")
        return True

    def share_url(self) -> str:
        """URL carrying the current store state (without waiting for the debouncer)."""
        self.write_now()
        return self._location.url

    def dispose(self):
        """Cancel the pending write and stop listening."""
        self._writer.cancel()
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None
        if self._unsubscribe_location is not None:
            self._unsubscribe_location()
            self._unsubscribe_location = None

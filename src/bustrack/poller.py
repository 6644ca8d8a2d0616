"""Refresh cycles that keep one subscription's snapshot up to date.

Each poller owns exactly one slot in the :class:`~bustrack.store.SnapshotStore`.
A result is only written if it belongs to the most recently issued request and
the poller has not been stopped, so a slow earlier response can never replace
a fresher one and a torn-down subscription never writes.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from .api_client import BusDataClient
from .config import BusTrackConfig
from .errors import BusTrackError, CapabilityUnavailableError
from .models import BoundingBox, SubscriptionKey, SubscriptionKind
from .store import SnapshotStore

logger = logging.getLogger(__name__)

# Marks a failure that leaves the previous snapshot in place
KEEP_SNAPSHOT = object()


class PollStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class PollerState:
    """Point-in-time view of a poller's status."""
    status: PollStatus
    error: Optional[str] = None
    error_type: Optional[Type[BaseException]] = None
    last_updated: Optional[datetime] = None

    @property
    def loading(self) -> bool:
        return self.status is PollStatus.LOADING

    @property
    def capability_unavailable(self) -> bool:
        """True when the error is permanent for this upstream, not transient."""
        return self.error_type is not None and issubclass(self.error_type, CapabilityUnavailableError)


class Poller:
    """
    Base class for a single subscription's refresh cycle.

    States: IDLE -> LOADING -> READY | ERROR, and back to LOADING on the next
    cycle. Subclasses set ``kind`` and ``required_params`` and implement
    ``_fetch``.

    Triggers:
    - ``start()``: run a cycle now, then every ``refresh_interval_ms`` in a
      background thread when ``auto_refresh`` is on.
    - ``tick()``: interval trigger; skipped while a request is outstanding.
    - ``refresh()``: on-demand trigger; supersedes any outstanding request.
    - ``update(**params)``: key change; cancels the old cycle and starts a new one.
    - ``stop()``: teardown; outstanding results become no-ops.
    """

    kind: SubscriptionKind
    required_params: Tuple[str, ...] = ()
    auto_refresh_default = True

    def __init__(
        self,
        client: BusDataClient,
        store: SnapshotStore,
        config: Optional[BusTrackConfig] = None,
        auto_refresh: Optional[bool] = None,
        **params: Any,
    ):
        self.client = client
        self.store = store
        self.config = config or client.config
        self.auto_refresh = self.auto_refresh_default if auto_refresh is None else auto_refresh

        self._params: Dict[str, Any] = dict(params)
        self._lock = threading.Lock()
        self._status = PollStatus.IDLE
        self._error: Optional[str] = None
        self._error_type: Optional[Type[BaseException]] = None
        self._last_updated: Optional[datetime] = None
        self._generation = 0
        self._closed = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def key(self) -> SubscriptionKey:
        with self._lock:
            return self._build_key(self._params)

    @property
    def params(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._params)

    @property
    def state(self) -> PollerState:
        with self._lock:
            return PollerState(
                status=self._status,
                error=self._error,
                error_type=self._error_type,
                last_updated=self._last_updated,
            )

    @property
    def stopped(self) -> bool:
        return self._closed

    def _build_key(self, params: Dict[str, Any]) -> SubscriptionKey:
        return SubscriptionKey.build(self.kind, **params)

    def _has_required_params(self, params: Dict[str, Any]) -> bool:
        return all(params.get(name) for name in self.required_params)

    def _fetch(self, params: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def refresh(self) -> bool:
        """
        Run one cycle now, superseding any outstanding request.

        Returns:
            True if this cycle's result was written to the store.
        """
        cycle = self._begin(skip_if_loading=False)
        if cycle is None:
            return False
        return self._run_cycle(*cycle)

    def tick(self) -> bool:
        """Run one scheduled cycle unless a request is still outstanding."""
        cycle = self._begin(skip_if_loading=True)
        if cycle is None:
            return False
        return self._run_cycle(*cycle)

    def update(self, **params: Any) -> bool:
        """
        Change subscription parameters and start a fresh cycle.

        Any outstanding request for the old parameters is abandoned. If a
        required parameter is now missing the poller goes back to IDLE.

        Returns:
            True if the new cycle's result was written to the store.
        """
        self._check_params(params)
        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot update a stopped poller")
            self._params.update(params)
            self._generation += 1
            self._status = PollStatus.IDLE
            self._error = None
            self._error_type = None
            self._last_updated = None
        return self.refresh()

    def key_for(self, **params: Any) -> SubscriptionKey:
        """Key this poller would have after ``update(**params)``, without changing it."""
        self._check_params(params)
        with self._lock:
            merged = dict(self._params)
        merged.update(params)
        return self._build_key(merged)

    def _check_params(self, params: Dict[str, Any]) -> None:
        unknown = set(params) - set(self._params)
        if unknown:
            raise TypeError(f"Unknown parameters for {self.kind.value} poller: {sorted(unknown)}")

    def _begin(self, skip_if_loading: bool) -> Optional[Tuple[int, Dict[str, Any], SubscriptionKey]]:
        with self._lock:
            if self._closed:
                return None
            params = dict(self._params)
            key = self._build_key(params)
            if not self._has_required_params(params):
                self._status = PollStatus.IDLE
                return None
            if skip_if_loading and self._status is PollStatus.LOADING:
                logger.debug(f"Skipping tick for {key}: previous request still outstanding")
                return None
            self._generation += 1
            self._status = PollStatus.LOADING
            return self._generation, params, key

    def _run_cycle(self, generation: int, params: Dict[str, Any], key: SubscriptionKey) -> bool:
        try:
            data = self._fetch(params)
        except BusTrackError as e:
            return self._fail(generation, key, e)
        except Exception as e:
            logger.exception(f"Unexpected error while polling {key}")
            return self._fail(generation, key, e)
        return self._succeed(generation, key, data)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _succeed(self, generation: int, key: SubscriptionKey, data: Any) -> bool:
        with self._lock:
            if not self._is_current(generation):
                logger.debug(f"Discarding stale result for {key}")
                return False
            self.store.write(key, data)
            self._status = PollStatus.READY
            self._error = None
            self._error_type = None
            self._last_updated = datetime.now()
        return True

    def _data_on_error(self, error: BaseException) -> Any:
        """Data stored alongside an error; KEEP_SNAPSHOT leaves the previous snapshot."""
        return KEEP_SNAPSHOT

    def _fail(self, generation: int, key: SubscriptionKey, error: BaseException) -> bool:
        with self._lock:
            if not self._is_current(generation):
                logger.debug(f"Discarding stale error for {key}: {error}")
                return False
            data = self._data_on_error(error)
            if data is not KEEP_SNAPSHOT:
                self.store.write(key, data)
            message = str(error) or error.__class__.__name__
            self._status = PollStatus.ERROR
            self._error = message
            self._error_type = type(error)
        logger.warning(f"Poll failed for {key}: {message}")
        return False

    def start(self) -> None:
        """Start polling in a background thread."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot start a stopped poller")
            if self._thread is not None:
                return
            key = self._build_key(self._params)
            self._thread = threading.Thread(target=self._run, name=f"bustrack-{key}", daemon=True)
            thread = self._thread
        logger.info(f"Starting poller for {key}")
        thread.start()

    def _run(self) -> None:
        self.tick()
        if not self.auto_refresh:
            return
        while not self._stop_event.wait(self.config.refresh_interval):
            self.tick()

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop polling. Results of outstanding requests are discarded.

        Args:
            wait: Join the background thread before returning.
            timeout: Maximum seconds to wait when ``wait`` is set.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            thread = self._thread
            key = self._build_key(self._params)
        self._stop_event.set()
        logger.info(f"Stopped poller for {key}")
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "Poller":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


class ArrivalsPoller(Poller):
    """Polls arrivals at one stop, optionally for a single service."""

    kind = SubscriptionKind.ARRIVALS
    required_params = ("stop_code",)

    def __init__(
        self,
        client: BusDataClient,
        store: SnapshotStore,
        stop_code: Optional[str] = None,
        service_no: Optional[str] = None,
        config: Optional[BusTrackConfig] = None,
        auto_refresh: Optional[bool] = None,
    ):
        super().__init__(
            client, store, config=config, auto_refresh=auto_refresh,
            stop_code=stop_code, service_no=service_no,
        )

    def _fetch(self, params: Dict[str, Any]) -> Any:
        return self.client.get_arrivals(str(params["stop_code"]), service_no=params.get("service_no"))


class NearbyStopsPoller(Poller):
    """Polls the stops in a square box around a point.

    Stop data rarely changes, so this runs once per key unless
    ``auto_refresh`` is requested.
    """

    kind = SubscriptionKind.NEARBY_STOPS
    required_params = ("latitude", "longitude", "radius")
    auto_refresh_default = False

    def __init__(
        self,
        client: BusDataClient,
        store: SnapshotStore,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius: Optional[float] = None,
        limit: Optional[int] = None,
        service: Optional[str] = None,
        config: Optional[BusTrackConfig] = None,
        auto_refresh: Optional[bool] = None,
    ):
        config = config or client.config
        super().__init__(
            client, store, config=config, auto_refresh=auto_refresh,
            latitude=latitude,
            longitude=longitude,
            radius=config.bbox_radius if radius is None else radius,
            limit=config.stop_query_limit if limit is None else limit,
            service=service,
        )

    @staticmethod
    def _bbox(params: Dict[str, Any]) -> BoundingBox:
        return BoundingBox.around(params["latitude"], params["longitude"], params["radius"])

    def _build_key(self, params: Dict[str, Any]) -> SubscriptionKey:
        if not self._has_required_params(params):
            return super()._build_key(params)
        return SubscriptionKey.build(
            self.kind,
            bbox=self._bbox(params).to_bbox_param(),
            limit=params.get("limit"),
            service=params.get("service"),
        )

    def _fetch(self, params: Dict[str, Any]) -> Any:
        return self.client.get_stops(
            self._bbox(params),
            limit=params.get("limit"),
            service=params.get("service"),
        )


class RoutePoller(Poller):
    """Fetches a service's route. A missing route is stored as None."""

    kind = SubscriptionKind.ROUTE
    required_params = ("service_no",)
    auto_refresh_default = False

    def __init__(
        self,
        client: BusDataClient,
        store: SnapshotStore,
        service_no: Optional[str] = None,
        config: Optional[BusTrackConfig] = None,
        auto_refresh: Optional[bool] = None,
    ):
        super().__init__(client, store, config=config, auto_refresh=auto_refresh, service_no=service_no)

    def _fetch(self, params: Dict[str, Any]) -> Any:
        return self.client.get_route(str(params["service_no"]))


class PositionsPoller(Poller):
    """Polls live vehicle positions of a service.

    When the upstream has no realtime endpoint the slot holds an empty list
    and the state carries the "not available" error.
    """

    kind = SubscriptionKind.POSITIONS
    required_params = ("service_no",)

    def __init__(
        self,
        client: BusDataClient,
        store: SnapshotStore,
        service_no: Optional[str] = None,
        config: Optional[BusTrackConfig] = None,
        auto_refresh: Optional[bool] = None,
    ):
        super().__init__(client, store, config=config, auto_refresh=auto_refresh, service_no=service_no)

    def _fetch(self, params: Dict[str, Any]) -> Any:
        return self.client.get_positions(str(params["service_no"]))

    def _data_on_error(self, error: BaseException) -> Any:
        if isinstance(error, CapabilityUnavailableError):
            return []
        return KEEP_SNAPSHOT

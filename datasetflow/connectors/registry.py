"""Connector registry and scoped connection acquisition.

The registry is a single long-lived object created at startup and injected
wherever connectors are needed. It owns one BoundedSemaphore per connector so
that ``max_concurrent_connections`` is enforced across all queries.
"""

import importlib
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import chain
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Type,
    Union,
)

from datasetflow.connectors.base.config_schema import ConfigSchema
from datasetflow.connectors.base.connector import (
    CATEGORIES,
    REQUIRED_OPERATIONS,
    Connection,
    Connector,
    ConnectorCapabilities,
    ConnectorDescriptor,
)
from datasetflow.exceptions import (
    ConfigurationError,
    QueryCancelledError,
    QueryTimeoutError,
)
from datasetflow.logging import get_logger
from datasetflow.models import RawQueryResult

logger = get_logger(__name__)

PARAM_STYLES = ("qmark", "named")

# Seconds between checks of the timeout and cancel token while a call runs.
POLL_INTERVAL = 0.05
# Seconds to wait for an interrupted call to unwind before giving up on it.
INTERRUPT_GRACE = 2.0


@dataclass
class ConfigValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


class CancelToken:
    """Thread-safe cancellation flag shared by one in-flight query."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def run_with_timeout(
    func: Callable[[], Any],
    timeout: Optional[float] = None,
    cancel_token: Optional[CancelToken] = None,
    on_abort: Optional[Callable[[], bool]] = None,
    description: str = "connector call",
) -> Any:
    """Run ``func`` on a worker thread, honouring a timeout and a cancel token.

    Args:
        func: Zero-argument callable doing the blocking work
        timeout: Seconds before QueryTimeoutError is raised; None waits forever
        cancel_token: Token checked while the call is running
        on_abort: Called on timeout or cancellation; returns True when it
            interrupted the running call
        description: Used in log and error messages

    Returns:
        Whatever ``func`` returns

    Raises:
        QueryTimeoutError: If the call did not finish in time
        QueryCancelledError: If the token was cancelled; the call's result,
            if any, is discarded
    """
    outcome: Dict[str, Any] = {}
    done = threading.Event()

    def target():
        try:
            outcome["value"] = func()
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    worker = threading.Thread(target=target, name=f"datasetflow-{description}")
    worker.daemon = True
    worker.start()

    deadline = None if timeout is None else time.monotonic() + timeout
    abort_requested = False
    while not done.wait(POLL_INTERVAL):
        if cancel_token is not None and cancel_token.cancelled and not abort_requested:
            abort_requested = True
            interrupted = bool(on_abort()) if on_abort else False
            logger.debug(
                f"Cancellation requested for {description} "
                f"(interrupted={interrupted})"
            )
            if interrupted:
                done.wait(INTERRUPT_GRACE)
                raise QueryCancelledError(f"{description} was cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            if on_abort and not abort_requested:
                on_abort()
                done.wait(INTERRUPT_GRACE)
            logger.warning(f"{description} timed out after {timeout}s")
            raise QueryTimeoutError(
                f"{description} exceeded timeout of {timeout}s",
                timeout_seconds=timeout,
            )

    if cancel_token is not None and cancel_token.cancelled:
        raise QueryCancelledError(f"{description} was cancelled")
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")


def load_connector_class(path: str) -> Type[Connector]:
    """Import a connector class from ``package.module:ClassName``.

    A dotted ``package.module.ClassName`` path is accepted as well.
    """
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ImportError(f"Invalid connector path: {path!r}")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ImportError(f"Module {module_name!r} has no attribute {attr!r}")


class ScopedConnection:
    """A connection bound to one query's timeout and cancel token."""

    def __init__(
        self,
        connector: Connector,
        connection: Connection,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.connector = connector
        self.connection = connection
        self.timeout = timeout
        self.cancel_token = cancel_token

    @property
    def param_style(self) -> str:
        return self.connector.param_style

    def execute(self, query: str, params: Optional[Any] = None) -> RawQueryResult:
        if self.cancel_token is not None and self.cancel_token.cancelled:
            raise QueryCancelledError("Query was cancelled before execution")
        return run_with_timeout(
            lambda: self.connector.execute_raw_query(self.connection, query, params),
            timeout=self.timeout,
            cancel_token=self.cancel_token,
            on_abort=self._interrupt,
            description=f"{self.connector.name} query",
        )

    def _interrupt(self) -> bool:
        if not self.connector.capabilities.supports_cancellation:
            return False
        try:
            return bool(self.connector.cancel(self.connection))
        except Exception as e:
            logger.warning(f"{self.connector.name}: cancel failed: {e}")
            return False


class ConnectorRegistry:
    """Registry of connector instances keyed by unique name."""

    def __init__(self):
        self._connectors: Dict[str, Connector] = {}
        self._slots: Dict[str, threading.BoundedSemaphore] = {}
        self._lock = threading.RLock()

    def register(
        self, connector: Union[Connector, Type[Connector]]
    ) -> ConnectorDescriptor:
        """Validate and register a connector class or instance.

        A later registration under an existing name replaces the earlier one.

        Raises:
            ConfigurationError: If the connector does not satisfy the contract
        """
        instance = self._instantiate(connector)
        self._check_contract(instance)

        with self._lock:
            if instance.name in self._connectors:
                logger.warning(
                    f"Connector '{instance.name}' is already registered; "
                    "replacing it with the new registration"
                )
            self._connectors[instance.name] = instance
            self._slots[instance.name] = threading.BoundedSemaphore(
                instance.capabilities.max_concurrent_connections
            )
        logger.debug(f"Registered connector: {instance.name} ({instance.category})")
        return instance.describe()

    def discover(
        self,
        connectors: Optional[Iterable[Any]] = None,
        extra_paths: Iterable[str] = (),
        disabled: Iterable[str] = (),
    ) -> List[str]:
        """Register a list of connectors, skipping any that are broken.

        Args:
            connectors: Connector classes or instances; defaults to the
                built-in list
            extra_paths: ``module:Class`` paths to import and register
            disabled: Names to leave unregistered

        Returns:
            Names of the connectors that were registered
        """
        if connectors is None:
            from datasetflow.connectors import BUILTIN_CONNECTORS

            connectors = BUILTIN_CONNECTORS

        disabled = set(disabled)
        registered = []
        for item in chain(connectors, extra_paths):
            try:
                if isinstance(item, str):
                    item = load_connector_class(item)
                if getattr(item, "name", None) in disabled:
                    logger.info(f"Skipping disabled connector: {item.name}")
                    continue
                registered.append(self.register(item).name)
            except (ConfigurationError, ImportError) as e:
                logger.warning(f"Skipping connector {item!r}: {e}")
        logger.info(f"Discovered {len(registered)} connectors: {registered}")
        return registered

    def get(self, name: str) -> Optional[Connector]:
        with self._lock:
            return self._connectors.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._connectors)

    def describe(self, name: str) -> Optional[ConnectorDescriptor]:
        connector = self.get(name)
        return connector.describe() if connector else None

    def by_category(self, category: str) -> List[ConnectorDescriptor]:
        with self._lock:
            connectors = list(self._connectors.values())
        return [
            c.describe()
            for c in sorted(connectors, key=lambda c: c.name)
            if c.category == category
        ]

    def categories(self) -> List[str]:
        with self._lock:
            return sorted({c.category for c in self._connectors.values()})

    def validate_config(
        self, name: str, config: Optional[Mapping[str, Any]]
    ) -> ConfigValidationResult:
        connector = self.get(name)
        if connector is None:
            return ConfigValidationResult(False, [f"Unknown connector: {name}"])
        errors = connector.validate_config(config)
        return ConfigValidationResult(not errors, errors)

    @contextmanager
    def connection(
        self,
        name: str,
        config: Optional[Mapping[str, Any]],
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        acquire_timeout: Optional[float] = None,
    ) -> Iterator[ScopedConnection]:
        """Acquire a connection for the duration of one query.

        The configuration is validated before any network call. The
        connection is disconnected and its concurrency slot released on
        every exit path.

        Raises:
            ConfigurationError: Unknown connector or invalid configuration
            QueryTimeoutError: No connection slot became free in time
            DataSourceConnectionError: The backend could not be reached
        """
        connector = self.get(name)
        if connector is None:
            raise ConfigurationError(
                f"Unknown connector: {name}", connector_name=name
            )
        errors = connector.validate_config(config)
        if errors:
            raise ConfigurationError(
                f"Invalid configuration for connector '{name}'",
                errors=errors,
                connector_name=name,
            )

        with self._lock:
            slots = self._slots[name]
        wait = acquire_timeout if acquire_timeout is not None else timeout
        if not slots.acquire(timeout=wait):
            raise QueryTimeoutError(
                f"No free connection slot for connector '{name}' within {wait}s",
                timeout_seconds=wait,
            )
        try:
            connection = self._open(connector, config, timeout, cancel_token)
            try:
                yield ScopedConnection(connector, connection, timeout, cancel_token)
            finally:
                self._close(connector, connection)
        finally:
            slots.release()

    def _open(
        self,
        connector: Connector,
        config: Optional[Mapping[str, Any]],
        timeout: Optional[float],
        cancel_token: Optional[CancelToken],
    ) -> Connection:
        # A connection that arrives after the caller gave up is closed by
        # whichever side sees it second.
        state: Dict[str, Any] = {"abandoned": False}
        lock = threading.Lock()

        def open_connection() -> Connection:
            connection = connector.connect(config)
            with lock:
                if state["abandoned"]:
                    logger.debug(f"{connector.name}: closing late connection")
                    self._close(connector, connection)
                else:
                    state["connection"] = connection
            return connection

        try:
            return run_with_timeout(
                open_connection,
                timeout=timeout,
                cancel_token=cancel_token,
                description=f"{connector.name} connect",
            )
        except (QueryTimeoutError, QueryCancelledError):
            with lock:
                state["abandoned"] = True
                late = state.pop("connection", None)
            if late is not None:
                self._close(connector, late)
            raise

    @staticmethod
    def _close(connector: Connector, connection: Connection) -> None:
        try:
            connector.disconnect(connection)
        except Exception as e:
            logger.warning(
                f"{connector.name}: error during disconnect: {e}", exc_info=True
            )

    @staticmethod
    def _instantiate(connector: Union[Connector, Type[Connector]]) -> Connector:
        if isinstance(connector, Connector):
            return connector
        if isinstance(connector, type) and issubclass(connector, Connector):
            try:
                return connector()
            except Exception as e:
                raise ConfigurationError(
                    f"Cannot instantiate connector {connector.__name__}: {e}"
                ) from e
        raise ConfigurationError(f"Not a connector: {connector!r}")

    @staticmethod
    def _check_contract(connector: Connector) -> None:
        problems = []
        name = getattr(connector, "name", None)
        if not isinstance(name, str) or not name:
            problems.append("name must be a non-empty string")
        if getattr(connector, "category", None) not in CATEGORIES:
            problems.append(f"category must be one of {list(CATEGORIES)}")
        for operation in REQUIRED_OPERATIONS:
            if not callable(getattr(connector, operation, None)):
                problems.append(f"operation '{operation}' is not callable")

        schema = getattr(connector, "config_schema", None)
        if not isinstance(schema, ConfigSchema):
            problems.append("config_schema must be a ConfigSchema")
        elif not schema.is_well_formed():
            problems.append("config schema is malformed")

        capabilities = getattr(connector, "capabilities", None)
        if not isinstance(capabilities, ConnectorCapabilities):
            problems.append("capabilities must be a ConnectorCapabilities")
        else:
            max_connections = capabilities.max_concurrent_connections
            if (
                isinstance(max_connections, bool)
                or not isinstance(max_connections, int)
                or max_connections <= 0
            ):
                problems.append(
                    "max_concurrent_connections must be a positive integer"
                )
        if getattr(connector, "param_style", None) not in PARAM_STYLES:
            problems.append(f"param_style must be one of {list(PARAM_STYLES)}")

        if problems:
            raise ConfigurationError(
                f"Connector '{name}' failed validation",
                errors=problems,
                connector_name=name if isinstance(name, str) and name else None,
            )

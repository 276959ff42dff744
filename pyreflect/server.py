"""Server-side RPCServer for pyreflect.

Owns the type registry, the serialization policy and the set of live
sessions. Any number of servers may exist in one process; none is global.
"""

import logging
import threading
from typing import Any, Optional

from ._internal.codec import JSONCodec
from ._internal.dispatcher import Dispatcher
from ._internal.exclusion import ExclusionPolicy, StrategyType
from ._internal.rpc_transports import LineTransport
from ._internal.session import RPCSession
from ._internal.type_registry import TypeRegistry
from .config import ServerConfig, resolve_type_reference, validate_server_config
from .interfaces import ExclusionStrategy

__all__ = ["RPCServer", "RPCSession", "StrategyType"]

logger = logging.getLogger(__name__)


class RPCServer:
    """Factory and registry for RPC sessions sharing one configuration."""

    def __init__(self, config: Optional[ServerConfig] = None, registry: Optional[TypeRegistry] = None) -> None:
        """Initialize the RPCServer.

        Args:
            config: Server configuration; missing keys take their defaults.
                ``exposed_types`` are imported and registered immediately.
            registry: Registry to extend; a fresh one is created when omitted.
        """
        self.config: ServerConfig = validate_server_config(dict(config or {}))
        self.registry = registry if registry is not None else TypeRegistry()
        for reference in self.config["exposed_types"]:
            self.registry.register(resolve_type_reference(reference))

        whitelist = [resolve_type_reference(ref) for ref in self.config["whitelist_types"]]
        self.policy = ExclusionPolicy(whitelist)
        self.codec = JSONCodec(self.policy)
        self.dispatcher = Dispatcher(self.registry, self.codec, self.config["include_error_kind"])

        self._sessions: set[RPCSession] = set()
        self._sessions_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Types and policy
    # ------------------------------------------------------------------

    def expose(self, cls: type, name: Optional[str] = None, **kwargs: Any) -> type:
        """Register *cls* so requests may name it; returns *cls* (usable as a decorator)."""
        self.registry.register(cls, name, **kwargs)
        return cls

    def add_exclusion_strategies(self, strategy_type: StrategyType, *strategies: ExclusionStrategy) -> None:
        """Add exclusion strategies. Only use this if you know what you're doing.

        Strategies determine what gets serialized and deserialized; some fields
        must be excluded for arbitrary return values to encode at all.
        """
        self.policy.add_strategies(strategy_type, *strategies)

    def clear_exclusion_strategies(self, strategy_type: StrategyType = StrategyType.BOTH) -> None:
        """Remove all strategies of *strategy_type*, INCLUDING THE DEFAULTS."""
        self.policy.clear_strategies(strategy_type)

    def reset_exclusion_strategies(self) -> None:
        """Restore the default strategies on both chains."""
        self.policy.reset_strategies()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> list[RPCSession]:
        with self._sessions_lock:
            return list(self._sessions)

    @property
    def is_active(self) -> bool:
        with self._sessions_lock:
            return bool(self._sessions)

    def create_session(
        self, transport: LineTransport, daemon: Optional[bool] = None, start: bool = True
    ) -> RPCSession:
        """Create and register a session serving *transport*, by default on its own thread.

        This allows any transport that provides line read/write semantics.

        Args:
            transport: The connection to serve.
            daemon: Whether the session thread is a daemon thread; defaults to
                the ``daemon_sessions`` config value.
            start: When False, the session is registered but not started; the
                caller runs it with :meth:`RPCSession.run_in_current_thread`.
        """
        session = RPCSession(transport, self.dispatcher, self.codec, on_close=self._remove_session)
        with self._sessions_lock:
            self._sessions.add(session)
        if start:
            session.start(self.config["daemon_sessions"] if daemon is None else daemon)
            logger.debug("Started %s", session.name)
        return session

    def _remove_session(self, session: RPCSession) -> None:
        with self._sessions_lock:
            self._sessions.discard(session)

    def close(self, return_immediately: bool = False) -> None:
        """Close every session, optionally waiting for each to exit.

        Args:
            return_immediately: If True, return without waiting for the
                session threads to end.
        """
        sessions = self.sessions
        for session in sessions:
            try:
                session.close(return_immediately=True)
            except Exception as e:
                logger.error("Error closing %s: %s", session.name, e)

        if not return_immediately:
            for session in sessions:
                session.join()

        with self._sessions_lock:
            self._sessions.difference_update(sessions)

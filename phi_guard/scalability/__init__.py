"""Scalability layer: distributed locking, per-key locks and circuit breaking. No FastAPI."""

from phi_guard.scalability.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from phi_guard.scalability.distributed_lock import DistributedLock, LockBackend
from phi_guard.scalability.keyed_lock import KeyedLocks

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "DistributedLock",
    "KeyedLocks",
    "LockBackend",
]

"""Bounded calls across the account gateway boundary.

Every RPC runs on a dedicated thread pool and is waited on with a timeout,
so a hung broker call fails that one operation instead of the caller.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Optional

from loguru import logger

from ..errors import GatewayUnavailableError, GatewayTimeoutError
from .broker_interface import AccountGateway, GatewayConnection


class GatewayClient:
    """Wraps an AccountGateway with connection checks and per-call timeouts."""

    def __init__(self, gateway: AccountGateway, default_timeout: float = 5.0, max_workers: int = 16):
        self.gateway = gateway
        self.default_timeout = default_timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gateway")

    def connection(self) -> GatewayConnection:
        """Active connection handle. Raises GatewayUnavailableError when disconnected."""
        if not self.gateway.is_active():
            raise GatewayUnavailableError("Not connected to broker gateway")
        return self.gateway.get_connection()

    def is_active(self) -> bool:
        return self.gateway.is_active()

    def call(self, method: str, *args, timeout: Optional[float] = None, **kwargs) -> Any:
        """Invoke a connection RPC by name, bounded by timeout (seconds)."""
        conn = self.connection()
        fn = getattr(conn, method)
        limit = self.default_timeout if timeout is None else timeout

        future = self._pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=limit)
        except FutureTimeout:
            future.cancel()
            logger.warning(f"[GATEWAY] {method} timed out after {limit:.2f}s")
            raise GatewayTimeoutError(
                f"Gateway call {method} timed out after {limit:.2f}s",
                details={"method": method, "timeout": limit},
            ) from None

    def shutdown(self):
        self._pool.shutdown(wait=False, cancel_futures=True)

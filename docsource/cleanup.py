"""Resource cleanup for adapters and data sources.

Adapters register the clients they open; ``cleanup`` closes each of them
once, using whichever close-style method the resource exposes.
"""

import asyncio
import typing as t

from .logger import get_logger

logger = get_logger(__name__)

_CLEANUP_METHODS = ("close", "aclose", "disconnect", "shutdown")


class CleanupMixin:
    """Simple mixin for resource cleanup."""

    def __init__(self) -> None:
        self._resources: list[t.Any] = []
        self._cleaned_up = False
        self._cleanup_lock: asyncio.Lock | None = None

    def register_resource(self, resource: t.Any) -> None:
        """Register a resource for cleanup."""
        if resource not in self._resources:
            self._resources.append(resource)

    async def cleanup_resource(self, resource: t.Any) -> None:
        """Clean up a single resource using common patterns."""
        if resource is None:
            return

        for method_name in _CLEANUP_METHODS:
            method = getattr(resource, method_name, None)
            if method is None:
                continue
            try:
                result = method()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug(f"Cleaned up resource using {method_name}()")
                return
            except Exception as e:
                logger.debug(f"Failed to cleanup using {method_name}(): {e}")

    async def _cleanup_resources(self) -> None:
        """Override to release subclass-specific state before resources close."""

    async def cleanup(self) -> None:
        """Clean up all registered resources."""
        if self._cleanup_lock is None:
            self._cleanup_lock = asyncio.Lock()

        async with self._cleanup_lock:
            if self._cleaned_up:
                return

            await self._cleanup_resources()

            errors = []
            for resource in self._resources.copy():
                try:
                    await self.cleanup_resource(resource)
                except Exception as e:
                    errors.append(f"Failed to cleanup resource: {e}")

            self._resources.clear()
            self._cleaned_up = True

            if errors:
                logger.warning(f"Resource cleanup errors: {'; '.join(errors)}")

    async def __aenter__(self) -> t.Self:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        """Async context manager exit with cleanup."""
        await self.cleanup()

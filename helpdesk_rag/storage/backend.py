"""Selection between the external vector service and the in-process index."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from .vector_store import InMemoryVectorIndex, VectorIndex

logger = logging.getLogger(__name__)


class BackendState(str, Enum):
    UNINITIALIZED = "uninitialized"
    EXTERNAL_ACTIVE = "external_active"
    FALLBACK_ACTIVE = "fallback_active"


class VectorBackendSelector:
    """Own the choice of vector backend for the lifetime of the process.

    ``initialize`` attempts the external backend exactly once. Any failure
    moves the selector to ``FALLBACK_ACTIVE`` permanently; there is no
    later retry of the external service.
    """

    def __init__(
        self,
        fallback: InMemoryVectorIndex,
        external: Optional[VectorIndex] = None,
        *,
        init_timeout: float = 10.0,
        log: logging.Logger | None = None,
    ) -> None:
        self.fallback = fallback
        self.external = external
        self.init_timeout = init_timeout
        self.state = BackendState.UNINITIALIZED
        self.last_error: str | None = None
        self._lock = asyncio.Lock()
        self._log = log or logger

    async def initialize(self) -> BackendState:
        async with self._lock:
            if self.state is not BackendState.UNINITIALIZED:
                return self.state

            if self.external is None:
                self.state = BackendState.FALLBACK_ACTIVE
                self._log.info("Vector backend: in-process index (no external backend configured)")
                return self.state

            try:
                await asyncio.wait_for(self.external.initialize(), timeout=self.init_timeout)
            except Exception as exc:
                self.last_error = str(exc) or exc.__class__.__name__
                self.state = BackendState.FALLBACK_ACTIVE
                self._log.warning(
                    "External vector backend unavailable, falling back to in-process index",
                    extra={"backend": self.external.name, "error": self.last_error},
                )
                return self.state

            self.state = BackendState.EXTERNAL_ACTIVE
            self._log.info("Vector backend: %s", self.external.name)
            return self.state

    @property
    def initialized(self) -> bool:
        return self.state is not BackendState.UNINITIALIZED

    @property
    def using_external(self) -> bool:
        return self.state is BackendState.EXTERNAL_ACTIVE

    @property
    def active(self) -> VectorIndex:
        if self.state is BackendState.EXTERNAL_ACTIVE and self.external is not None:
            return self.external
        return self.fallback

    @property
    def backend_name(self) -> str:
        return self.active.name

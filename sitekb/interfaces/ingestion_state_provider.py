"""Abstract base class for ingestion state persistence.

Holds two kinds of state that must survive process restarts:

* the **active generation** pointer per tenant, which the index writer
  flips once a new generation is fully written and which readers use to
  scope every query and count;
* the **run history**, one row per finished :class:`IngestionRun`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sitekb.models.ingestion import IngestionRun


class IIngestionStateProvider(ABC):
    """Contract for the active-generation pointer and run history."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create backing tables if needed.  Idempotent."""

    @abstractmethod
    async def get_active_generation(self, tenant_id: str) -> str | None:
        """Return the tenant's active generation, or ``None`` if never trained."""

    @abstractmethod
    async def set_active_generation(self, tenant_id: str, generation: str) -> None:
        """Atomically point *tenant_id* at *generation*."""

    @abstractmethod
    async def clear_active_generation(self, tenant_id: str) -> None:
        """Forget the tenant's active generation (no-op if unset)."""

    @abstractmethod
    async def record_run(self, run: IngestionRun) -> None:
        """Insert or update the history row for *run*."""

    @abstractmethod
    async def get_run(self, run_id: str) -> IngestionRun | None:
        """Return one run by id."""

    @abstractmethod
    async def list_runs(self, tenant_id: str, limit: int = 20) -> list[IngestionRun]:
        """Return the tenant's most recent runs, newest first."""

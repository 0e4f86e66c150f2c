"""Ingestion job and run models.

An :class:`IngestionRun` is immutable; the orchestrator advances it with
:meth:`IngestionRun.advance`, which validates the transition against the
run state machine and returns a new instance via ``model_copy``::

    QUEUED → CRAWLING → CHUNKING → EMBEDDING → INDEXED
       └──────────┴──────────┴──────────┴────→ FAILED
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from sitekb.utils.errors import IngestionError


class IngestionPhase(str, Enum):  # noqa: UP042
    """Phases of one ingestion run."""

    QUEUED = "QUEUED"
    CRAWLING = "CRAWLING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (IngestionPhase.INDEXED, IngestionPhase.FAILED)


_TRANSITIONS: dict[IngestionPhase, frozenset[IngestionPhase]] = {
    IngestionPhase.QUEUED: frozenset({IngestionPhase.CRAWLING, IngestionPhase.FAILED}),
    IngestionPhase.CRAWLING: frozenset({IngestionPhase.CHUNKING, IngestionPhase.FAILED}),
    IngestionPhase.CHUNKING: frozenset({IngestionPhase.EMBEDDING, IngestionPhase.FAILED}),
    IngestionPhase.EMBEDDING: frozenset({IngestionPhase.INDEXED, IngestionPhase.FAILED}),
    IngestionPhase.INDEXED: frozenset(),
    IngestionPhase.FAILED: frozenset(),
}


class IngestionJob(BaseModel):
    """Job payload ``{tenantId, baseUrl, maxPages}``; snake_case keys also accepted."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("tenant_id", "tenantId"),
    )
    base_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("base_url", "baseUrl"),
    )
    max_pages: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("max_pages", "maxPages"),
        description="Page-limit entitlement; None uses the configured default.",
    )
    max_bytes: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("max_bytes", "maxBytes"),
        description="Cap on total extracted text; None uses the configured default.",
    )


class IngestionRun(BaseModel):
    """Snapshot of one ingestion run, persisted to run history when it ends."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    base_url: str
    phase: IngestionPhase = IngestionPhase.QUEUED
    pages_crawled: int = 0
    chunks_created: int = 0
    records_written: int = 0
    # True when the run ended with a previously trained tenant left empty.
    degraded: bool = False
    error_message: str | None = None
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
    completed_at: datetime | None = None

    def advance(self, phase: IngestionPhase, **updates: Any) -> IngestionRun:
        """Return a copy moved to *phase* with *updates* applied.

        Raises
        ------
        IngestionError
            If *phase* is not reachable from the current phase.
        """
        if phase not in _TRANSITIONS[self.phase]:
            raise IngestionError(
                message=f"Invalid ingestion transition {self.phase.value} -> {phase.value}"
            )
        changes: dict[str, Any] = {"phase": phase, **updates}
        if phase.is_terminal:
            changes.setdefault(
                "completed_at", datetime.now(tz=timezone.utc)  # noqa: UP017
            )
        return self.model_copy(update=changes)

    def fail(self, error_message: str, **updates: Any) -> IngestionRun:
        return self.advance(IngestionPhase.FAILED, error_message=error_message, **updates)

    @property
    def succeeded(self) -> bool:
        return self.phase is IngestionPhase.INDEXED

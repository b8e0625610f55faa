"""
ImportOrchestrator -- DI container for batch imports.

Contract:
    Wires PartnerConfigService, DecisionRecorder and ImportExecutor around
    one session and one Clock.  Single place where batch dependencies are
    composed.

Architecture: credit_batch (top-level).  The canonical entry point for
    staging and running import batches.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - The orchestrator never commits; the caller owns the transaction.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from credit_config.service import PartnerConfigService
from credit_kernel.domain.clock import Clock, SystemClock
from credit_kernel.logging_config import get_logger
from credit_kernel.services.decision_recorder import DecisionRecorder

from credit_batch.services.executor import ExecutorSettings, ImportExecutor

logger = get_logger("batch.orchestrator")


class ImportOrchestrator:
    """DI container for the import pipeline.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``create_executor()`` returns an ImportExecutor.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config_service: PartnerConfigService | None = None,
        recorder: DecisionRecorder | None = None,
        settings: ExecutorSettings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config_service or PartnerConfigService(session, self._clock)
        self._recorder = recorder or DecisionRecorder(session, self._clock)
        self._settings = settings or ExecutorSettings()

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: ExecutorSettings | None = None,
    ) -> ImportOrchestrator:
        return cls(session=session, clock=clock, settings=settings)

    def create_executor(self, session: Session | None = None) -> ImportExecutor:
        """Create an ImportExecutor, optionally bound to another session."""
        if session is None:
            return ImportExecutor(
                session=self._session,
                config_service=self._config,
                recorder=self._recorder,
                clock=self._clock,
                settings=self._settings,
            )
        return ImportExecutor(
            session=session,
            config_service=PartnerConfigService(session, self._clock),
            recorder=DecisionRecorder(session, self._clock),
            clock=self._clock,
            settings=self._settings,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config_service(self) -> PartnerConfigService:
        return self._config

    @property
    def recorder(self) -> DecisionRecorder:
        return self._recorder

"""
CallSim - Motive Batch Analyzer
===============================

Walks the transcripts of an analysis run motive by motive, samples a bounded
number of attendances and asks a language model to synthesize one scenario
package per motive.

Progress is persisted after every attendance id so an interrupted run can be
observed, and resumed, from its last counter. Per-id and per-motive failures
are recorded as AnalysisError rows and never stop the run. Anything else
marks the run failed.

Usage:
    analyzer = MotiveBatchAnalyzer(CompletionClient.from_settings(settings))
    future = analyzer.start(run_id, tenant_id)   # returns immediately
"""

import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from sqlalchemy import distinct, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import func

from ..config import Settings
from ..core.db import dialect_insert, get_session, get_session_factory
from ..core.models import (
    AnalysisError,
    AnalysisRun,
    MotiveCache,
    MotiveProgress,
    MotiveResult,
    ResultStatusEnum,
    RoleEnum,
    RunStatusEnum,
    TranscriptRow,
)
from ..core.schemas import ChatMessage, ChatRole, MotiveSummaryPayload
from ..llm.client import extract_json
from ..observability.logging_config import OperationLogger, log_exception
from ..resilience.error_handler import CollaboratorError, ModelOutputError
from .runner import BackgroundRunner, get_runner

logger = logging.getLogger(__name__)

ATT_PROCESS_ERR = "ATT_PROCESS_ERR"
MOTIVE_LLM_ERR = "MOTIVE_LLM_ERR"

ROLE_LABELS = {RoleEnum.OPERATOR: "ATENDENTE", RoleEnum.BOT: "BOT"}
DEFAULT_ROLE_LABEL = "CLIENTE"

MOTIVE_ANALYSIS_GUIDANCE = """Você é um analista especializado. Com base nas transcrições de atendimentos REAIS a seguir, agregue padrões e gere um pacote de CENÁRIO para simulações.

MotivoDeContato (CENÁRIO): {motive}

TAREFAS:
1) Proponha um título sucinto para o cenário (scenario_title) que um humano entenda.
2) Liste de 1 a 4 perfis típicos de cliente (customer_profiles) em linguagem natural, ex.: ["Cliente Calmo", "Cliente Irritado"].
3) Descreva de forma objetiva o PROCESSO esperado (process_text) que o atendente deveria seguir (passo a passo resumido, sem dados sensíveis).
4) Liste DIRETRIZES objetivas para o atendente (operator_guidelines), ex.: ["Saudar com empatia", "Confirmar dados de segurança"].
5) Extraia PADRÕES recorrentes (patterns) sobre o atendimento ou o cliente.

FORMATO OBRIGATÓRIO (JSON estrito, sem comentários):
{{
  "scenario_title": "string",
  "customer_profiles": ["string", "..."],
  "process_text": "string",
  "operator_guidelines": ["string", "..."],
  "patterns": ["string", "..."]
}}"""


class CompletionService(Protocol):
    def complete(self, messages: list[ChatMessage]) -> str: ...


@dataclass
class MotiveAnalysisConfig:
    max_sample: int = 25
    max_transcript_chars: int = 30000

    def __post_init__(self):
        self.max_sample = max(1, int(self.max_sample))
        self.max_transcript_chars = max(1000, int(self.max_transcript_chars))

    @classmethod
    def from_settings(cls, settings: Settings) -> "MotiveAnalysisConfig":
        return cls(
            max_sample=settings.LAB_MAX_SAMPLE_ATT,
            max_transcript_chars=settings.LAB_MAX_TRANSCRIPT_CHARS,
        )


@dataclass
class TranscriptSample:
    """Ordered messages of one sampled attendance."""

    attendance_id: str
    messages: list[tuple[RoleEnum | None, str]] = field(default_factory=list)


def role_label(role: RoleEnum | None) -> str:
    return ROLE_LABELS.get(role, DEFAULT_ROLE_LABEL)


def build_motive_messages(motive: str, samples: list[TranscriptSample], max_chars: int) -> list[ChatMessage]:
    """Build the single user turn for a motive synthesis, truncated to max_chars."""
    blocks = []
    for i, sample in enumerate(samples, start=1):
        lines = "\n".join(f"{role_label(role)}: {text}" for role, text in sample.messages)
        blocks.append(f"==== ATENDIMENTO {i} | Id={sample.attendance_id} ====\n{lines}")

    body = "\n\n".join([
        MOTIVE_ANALYSIS_GUIDANCE.format(motive=motive),
        "TRANSCRIÇÕES (amostra, mensagens ordenadas):",
        "\n\n".join(blocks),
    ])
    return [ChatMessage(role=ChatRole.USER, content=body[:max_chars])]


class MotiveBatchAnalyzer:
    """Sequential, resumable synthesis of scenario packages per motive."""

    def __init__(
        self,
        llm: CompletionService,
        session_factory: sessionmaker | None = None,
        config: MotiveAnalysisConfig | None = None,
        runner: BackgroundRunner | None = None,
    ):
        self.llm = llm
        self.session_factory = session_factory or get_session_factory()
        self.config = config or MotiveAnalysisConfig()
        self.runner = runner or get_runner()

    def start(self, run_id: UUID, tenant_id: UUID) -> Future:
        """Schedule the run on the background runner and return at once."""
        logger.info(f"Scheduling analysis run {run_id}", extra={"extra_data": {"run_id": str(run_id)}})
        return self.runner.submit(self.run, run_id, tenant_id)

    def run(self, run_id: UUID, tenant_id: UUID) -> RunStatusEnum | None:
        """
        Execute the run synchronously.

        Returns the terminal status, or None when the run does not exist for
        this tenant. Never raises: fatal errors mark the run failed.
        """
        try:
            with OperationLogger(logger, "motive_analysis", tenant_id=str(tenant_id), run_id=str(run_id)):
                with get_session(self.session_factory) as session:
                    if not self._run_exists(session, run_id, tenant_id):
                        logger.info(f"Analysis run {run_id} not found for tenant; nothing to do")
                        return None
                    motives = self._list_motives(session, run_id, tenant_id)

                for motive, total in motives:
                    self._process_motive(run_id, tenant_id, motive, int(total))

                self._set_status(run_id, tenant_id, RunStatusEnum.COMPLETED)
                return RunStatusEnum.COMPLETED
        except Exception as e:
            log_exception(logger, f"Analysis run {run_id} failed", e, run_id=str(run_id))
            try:
                self._set_status(run_id, tenant_id, RunStatusEnum.FAILED, error=str(e) or type(e).__name__)
            except SQLAlchemyError as mark_err:
                log_exception(logger, f"Could not mark analysis run {run_id} as failed", mark_err)
            return RunStatusEnum.FAILED

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def _run_exists(session: Session, run_id: UUID, tenant_id: UUID) -> bool:
        return session.scalar(
            select(AnalysisRun.id).where(AnalysisRun.id == run_id, AnalysisRun.tenant_id == tenant_id)
        ) is not None

    @staticmethod
    def _list_motives(session: Session, run_id: UUID, tenant_id: UUID) -> list[tuple[str, int]]:
        stmt = (
            select(TranscriptRow.motive, func.count(distinct(TranscriptRow.attendance_id)))
            .where(TranscriptRow.run_id == run_id, TranscriptRow.tenant_id == tenant_id)
            .group_by(TranscriptRow.motive)
            .order_by(TranscriptRow.motive.asc())
        )
        return [(motive, total) for motive, total in session.execute(stmt)]

    @staticmethod
    def _list_attendance_ids(session: Session, run_id: UUID, tenant_id: UUID, motive: str) -> list[str]:
        stmt = (
            select(distinct(TranscriptRow.attendance_id))
            .where(
                TranscriptRow.run_id == run_id,
                TranscriptRow.tenant_id == tenant_id,
                TranscriptRow.motive == motive,
            )
            .order_by(TranscriptRow.attendance_id.asc())
        )
        return list(session.scalars(stmt))

    # -------------------------------------------------------------------------
    # Per motive
    # -------------------------------------------------------------------------

    def _process_motive(self, run_id: UUID, tenant_id: UUID, motive: str, total: int) -> None:
        with get_session(self.session_factory) as session:
            processed = self._seed_progress(session, run_id, tenant_id, motive, total)
            attendance_ids = self._list_attendance_ids(session, run_id, tenant_id, motive)

        sample_ids = set(attendance_ids[: self.config.max_sample])
        samples: list[TranscriptSample] = []

        for attendance_id in attendance_ids:
            try:
                with get_session(self.session_factory) as session:
                    rows = session.execute(
                        select(TranscriptRow.role_norm, TranscriptRow.message_text)
                        .where(
                            TranscriptRow.run_id == run_id,
                            TranscriptRow.tenant_id == tenant_id,
                            TranscriptRow.motive == motive,
                            TranscriptRow.attendance_id == attendance_id,
                        )
                        .order_by(TranscriptRow.seq.asc())
                    ).all()
                    if attendance_id in sample_ids:
                        samples.append(TranscriptSample(attendance_id, [(r.role_norm, r.message_text) for r in rows]))

                    session.execute(
                        update(MotiveProgress)
                        .where(MotiveProgress.run_id == run_id, MotiveProgress.motive == motive)
                        .values(processed_ids_distinct=min(processed + 1, total), updated_at=func.now())
                    )
                processed += 1
            except Exception as e:
                logger.warning(
                    f"Attendance {attendance_id} of motive '{motive}' failed: {e}",
                    extra={"extra_data": {"attendance_id": attendance_id, "motive": motive}},
                )
                self._record_error(run_id, tenant_id, attendance_id, motive, ATT_PROCESS_ERR, str(e))

        try:
            messages = build_motive_messages(motive, samples, self.config.max_transcript_chars)
            payload = MotiveSummaryPayload.from_model_output(extract_json(self.llm.complete(messages)), motive)
        except (CollaboratorError, ModelOutputError) as e:
            logger.warning(f"Synthesis of motive '{motive}' failed: {e}", extra={"extra_data": {"code": e.code}})
            self._record_error(run_id, tenant_id, None, motive, MOTIVE_LLM_ERR, str(e))
            return

        with get_session(self.session_factory) as session:
            self._upsert_result(session, run_id, tenant_id, motive, payload)
            if total > 0 and min(processed, total) >= total:
                self._upsert_cache(session, tenant_id, motive, payload)

        logger.info(
            f"Motive '{motive}' synthesized from {len(samples)} samples",
            extra={"extra_data": {"motive": motive, "total": total, "processed": min(processed, total)}},
        )

    @staticmethod
    def _seed_progress(session: Session, run_id: UUID, tenant_id: UUID, motive: str, total: int) -> int:
        """Make sure the progress row carries the current total; return the prior processed count."""
        stmt = dialect_insert(session, MotiveProgress).values(
            run_id=run_id,
            tenant_id=tenant_id,
            motive=motive,
            total_ids_distinct=total,
            processed_ids_distinct=0,
        )
        session.execute(
            stmt.on_conflict_do_update(
                index_elements=["run_id", "motive"],
                set_={"total_ids_distinct": stmt.excluded.total_ids_distinct},
            )
        )
        prior = session.scalar(
            select(MotiveProgress.processed_ids_distinct).where(
                MotiveProgress.run_id == run_id, MotiveProgress.motive == motive
            )
        )
        return int(prior or 0)

    @staticmethod
    def _upsert_result(session: Session, run_id: UUID, tenant_id: UUID, motive: str,
                       payload: MotiveSummaryPayload) -> None:
        stmt = dialect_insert(session, MotiveResult).values(
            run_id=run_id,
            tenant_id=tenant_id,
            motive=motive,
            title=payload.scenario_title,
            customer_profiles=payload.customer_profiles,
            process_text=payload.process_text,
            operator_guidelines=payload.operator_guidelines,
            patterns=payload.patterns,
            status=ResultStatusEnum.READY,
        )
        session.execute(
            stmt.on_conflict_do_update(
                index_elements=["run_id", "motive"],
                set_={
                    "title": stmt.excluded.title,
                    "customer_profiles": stmt.excluded.customer_profiles,
                    "process_text": stmt.excluded.process_text,
                    "operator_guidelines": stmt.excluded.operator_guidelines,
                    "patterns": stmt.excluded.patterns,
                    "status": stmt.excluded.status,
                    "updated_at": func.now(),
                },
            )
        )

    @staticmethod
    def _upsert_cache(session: Session, tenant_id: UUID, motive: str, payload: MotiveSummaryPayload) -> None:
        stmt = dialect_insert(session, MotiveCache).values(
            tenant_id=tenant_id,
            motive=motive,
            summary=payload.to_summary(),
        )
        session.execute(
            stmt.on_conflict_do_update(
                index_elements=["tenant_id", "motive"],
                set_={"summary": stmt.excluded.summary, "cached_at": func.now()},
            )
        )

    # -------------------------------------------------------------------------
    # Run bookkeeping
    # -------------------------------------------------------------------------

    def _record_error(self, run_id: UUID, tenant_id: UUID, attendance_id: str | None, motive: str,
                      code: str, reason: str) -> None:
        with get_session(self.session_factory) as session:
            session.add(AnalysisError(
                run_id=run_id,
                tenant_id=tenant_id,
                attendance_id=attendance_id,
                motive=motive,
                code=code,
                reason=reason,
            ))

    def _set_status(self, run_id: UUID, tenant_id: UUID, status: RunStatusEnum, error: str | None = None) -> None:
        with get_session(self.session_factory) as session:
            session.execute(
                update(AnalysisRun)
                .where(AnalysisRun.id == run_id, AnalysisRun.tenant_id == tenant_id)
                .values(status=status, error=error, updated_at=func.now())
            )

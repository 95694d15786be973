"""
CallSim - Analysis Run Reports
==============================

Read-only views over an analysis run: per-motive progress, synthesized
results and recorded errors. Runs of another tenant are reported as not
found.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..core.db import get_session
from ..core.models import AnalysisError, AnalysisRun, MotiveCache, MotiveProgress, MotiveResult
from ..core.schemas import MotiveProgressReport, RunProgressReport


def get_run_progress(session_factory: sessionmaker | None, run_id: UUID, tenant_id: UUID) -> RunProgressReport | None:
    """Return per-motive and overall progress, or None when the run is unknown."""
    with get_session(session_factory) as session:
        run = session.scalars(
            select(AnalysisRun).where(AnalysisRun.id == run_id, AnalysisRun.tenant_id == tenant_id)
        ).first()
        if run is None:
            return None

        rows = session.scalars(
            select(MotiveProgress)
            .where(MotiveProgress.run_id == run_id, MotiveProgress.tenant_id == tenant_id)
            .order_by(MotiveProgress.motive.asc())
        ).all()
        cached = set(session.scalars(
            select(MotiveCache.motive).where(
                MotiveCache.tenant_id == tenant_id,
                MotiveCache.motive.in_([row.motive for row in rows]),
            )
        ))

        motives = [
            MotiveProgressReport(
                motive=row.motive,
                total=row.total_ids_distinct,
                processed=row.processed_ids_distinct,
                cached=row.motive in cached,
            )
            for row in rows
        ]
        updated = [row.updated_at for row in rows if row.updated_at is not None]
        if run.updated_at is not None:
            updated.append(run.updated_at)

        return RunProgressReport(
            run_id=run.id,
            status=run.status.value,
            motives=motives,
            total=sum(m.total for m in motives),
            processed=sum(m.processed for m in motives),
            updated_at=max(updated) if updated else None,
        )


def list_results(session_factory: sessionmaker | None, run_id: UUID, tenant_id: UUID) -> list[dict[str, Any]]:
    with get_session(session_factory) as session:
        results = session.scalars(
            select(MotiveResult)
            .where(MotiveResult.run_id == run_id, MotiveResult.tenant_id == tenant_id)
            .order_by(MotiveResult.motive.asc())
        ).all()
        return [
            {"motive": r.motive, "status": r.status.value, **r.to_summary()}
            for r in results
        ]


def list_errors(session_factory: sessionmaker | None, run_id: UUID, tenant_id: UUID) -> list[dict[str, Any]]:
    with get_session(session_factory) as session:
        errors = session.scalars(
            select(AnalysisError)
            .where(AnalysisError.run_id == run_id, AnalysisError.tenant_id == tenant_id)
            .order_by(AnalysisError.created_at.asc(), AnalysisError.id.asc())
        ).all()
        return [
            {
                "attendance_id": e.attendance_id,
                "motive": e.motive,
                "code": e.code,
                "reason": e.reason,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in errors
        ]

"""
CallSim - Transcript Import
===========================

Loads a parsed transcript export into a new analysis run: one
``lab_transcript_rows`` row per message and a ``lab_progress`` row per motive
with its distinct-attendance total, ready for the motive batch analyzer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from ..core.db import dialect_insert, get_session, get_session_factory
from ..core.models import AnalysisRun, MotiveProgress, RunStatusEnum, TranscriptRow
from ..core.schemas import HeadersPreview
from ..observability.logging_config import OperationLogger, bind_context
from ..security.pii import anonymize
from .transcript_parser import compute_stats, parse_transcript_table, preview_headers

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    run_id: UUID
    status: str
    inserted_rows: int = 0
    skipped_rows: int = 0
    total_distinct_ids: int = 0
    motive_distinct_ids: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        data["run_id"] = str(self.run_id)
        return data


class TranscriptImportService:
    """Create analysis runs from transcript exports."""

    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory or get_session_factory()

    def preview_headers(self, content: bytes, filename: str | None, mime: str | None) -> HeadersPreview:
        return preview_headers(content, filename, mime)

    def import_transcripts(
        self,
        tenant_id: UUID,
        content: bytes,
        filename: str | None,
        mime: str | None,
        name: str | None = None,
        explicit_mapping: dict[str, str] | None = None,
        pii_mode: str = "default",
    ) -> ImportResult:
        """
        Parse a transcript table and store it as a pending run.

        Rows whose role is not recognised are left out of the run and
        reported in the warnings.

        Raises:
            UnsupportedFormatError, ParseFailureError
        """
        with OperationLogger(logger, "import_transcripts", tenant_id=str(tenant_id), filename=filename):
            parsed = parse_transcript_table(content, filename, mime, explicit_mapping)

            valid_rows = [row for row in parsed.rows if row.role_norm is not None]
            skipped = len(parsed.rows) - len(valid_rows)
            warnings = list(parsed.warnings)
            if skipped:
                warnings.append(f"Foram ignoradas {skipped} linhas devido a Role desconhecida ou inválida.")
            stats = compute_stats(valid_rows)

            with get_session(self.session_factory) as session:
                run = AnalysisRun(tenant_id=tenant_id, name=name or filename, status=RunStatusEnum.PENDING)
                session.add(run)
                session.flush()
                run_id = run.id
                bind_context(run_id=run_id)

                session.add_all(
                    TranscriptRow(
                        run_id=run_id,
                        tenant_id=tenant_id,
                        motive=row.motive,
                        attendance_id=row.attendance_id,
                        seq=row.seq,
                        role_raw=row.role_raw,
                        role_norm=row.role_norm,
                        message_text=anonymize(row.message_text, pii_mode),
                    )
                    for row in valid_rows
                )

                for motive, total in stats.motive_distinct_ids.items():
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

        result = ImportResult(
            run_id=run_id,
            status=RunStatusEnum.PENDING.value,
            inserted_rows=len(valid_rows),
            skipped_rows=skipped,
            total_distinct_ids=stats.total_distinct_ids,
            motive_distinct_ids=stats.motive_distinct_ids,
            warnings=warnings,
        )
        logger.info(
            f"Imported {result.inserted_rows} transcript rows into run {run_id}",
            extra={"extra_data": {"run_id": str(run_id), "skipped": skipped, "warnings": len(warnings)}},
        )
        return result

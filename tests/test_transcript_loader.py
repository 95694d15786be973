"""Tests for transcript import into analysis runs."""
import pytest
from sqlalchemy import select

from callsim.core.models import AnalysisRun, MotiveProgress, RoleEnum, RunStatusEnum, TranscriptRow
from callsim.ingestion.transcript_loader import TranscriptImportService
from callsim.resilience.error_handler import UnsupportedFormatError
from callsim.security.pii import anonymize

CSV = (
    "IdAtendimento;Message;Role;Ordem;MotivoDeContato\n"
    "A1;Quero cancelar, meu email é ana@exemplo.com;user;1;Cancelamento\n"
    "A1;Claro, vou ajudar;agent;2;Cancelamento\n"
    "A2;Também quero cancelar;user;1;Cancelamento\n"
    "A3;Fatura errada;cliente;1;Fatura\n"
    "A3;Encaminhando;supervisor;2;Fatura\n"
)


@pytest.fixture
def service(session_factory):
    return TranscriptImportService(session_factory)


def _rows(session_factory, run_id):
    with session_factory() as session:
        return session.scalars(
            select(TranscriptRow).where(TranscriptRow.run_id == run_id).order_by(TranscriptRow.attendance_id, TranscriptRow.seq)
        ).all()


class TestImportTranscripts:
    """Tests for TranscriptImportService.import_transcripts()."""

    def test_creates_pending_run(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv", name="Outubro")

        assert result.status == "pending"
        with session_factory() as session:
            run = session.get(AnalysisRun, result.run_id)
            assert run.status is RunStatusEnum.PENDING
            assert run.name == "Outubro"
            assert run.tenant_id == tenant.id

    def test_run_name_defaults_to_filename(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv")

        with session_factory() as session:
            assert session.get(AnalysisRun, result.run_id).name == "hist.csv"

    def test_unknown_roles_dropped_with_warning(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv")

        assert result.inserted_rows == 4
        assert result.skipped_rows == 1
        assert result.warnings[-1] == "Foram ignoradas 1 linhas devido a Role desconhecida ou inválida."
        rows = _rows(session_factory, result.run_id)
        assert len(rows) == 4
        assert {r.role_norm for r in rows} == {RoleEnum.CUSTOMER, RoleEnum.OPERATOR}

    def test_progress_totals_seeded(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv")

        assert result.total_distinct_ids == 3
        assert result.motive_distinct_ids == {"Cancelamento": 2, "Fatura": 1}
        with session_factory() as session:
            progress = {
                p.motive: (p.total_ids_distinct, p.processed_ids_distinct)
                for p in session.scalars(select(MotiveProgress).where(MotiveProgress.run_id == result.run_id))
            }
        assert progress == {"Cancelamento": (2, 0), "Fatura": (1, 0)}

    def test_messages_anonymized(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv")

        first = _rows(session_factory, result.run_id)[0]
        assert "ana@exemplo.com" not in first.message_text
        assert first.message_text == anonymize("Quero cancelar, meu email é ana@exemplo.com")

    def test_raw_mode_keeps_messages(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv", pii_mode="raw")

        assert "ana@exemplo.com" in _rows(session_factory, result.run_id)[0].message_text

    def test_role_stored_in_canonical_form(self, service, session_factory, tenant):
        result = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv")

        rows = _rows(session_factory, result.run_id)
        assert rows[-1].role_raw == "user"
        assert rows[-1].role_norm is RoleEnum.CUSTOMER

    def test_explicit_mapping(self, service, tenant):
        text = "conv;fala;quem;n;assunto\nZ1;Oi;bot;1;Entrega\n"
        mapping = {"attendance_id": "conv", "message": "fala", "role": "quem", "order": "n", "motive": "assunto"}

        result = service.import_transcripts(tenant.id, text.encode(), "x.csv", "text/csv", explicit_mapping=mapping)

        assert result.inserted_rows == 1
        assert result.motive_distinct_ids == {"Entrega": 1}

    def test_header_only_file_creates_empty_run(self, service, session_factory, tenant):
        result = service.import_transcripts(
            tenant.id, b"IdAtendimento;Message;Role;Ordem;MotivoDeContato\n", "x.csv", "text/csv"
        )

        assert result.inserted_rows == 0
        assert result.warnings == ["Nenhuma linha de dados no arquivo"]
        with session_factory() as session:
            assert session.scalars(select(MotiveProgress).where(MotiveProgress.run_id == result.run_id)).all() == []

    def test_unsupported_format_creates_no_run(self, service, session_factory, tenant):
        with pytest.raises(UnsupportedFormatError):
            service.import_transcripts(tenant.id, b"%PDF-1.4", "x.pdf", "application/pdf")

        with session_factory() as session:
            assert session.scalars(select(AnalysisRun)).all() == []

    def test_to_dict(self, service, tenant):
        data = service.import_transcripts(tenant.id, CSV.encode(), "hist.csv", "text/csv").to_dict()
        assert isinstance(data["run_id"], str)
        assert data["inserted_rows"] == 4


class TestPreviewHeaders:
    def test_delegates_to_parser(self, service):
        preview = service.preview_headers(CSV.encode(), "hist.csv", "text/csv")

        assert preview.suggested_mapping["motive"] == "MotivoDeContato"
        assert preview.canonical_complete is True

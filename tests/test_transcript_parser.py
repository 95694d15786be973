"""Tests for transcript table parsing, header mapping and stats."""
import io

import pandas as pd
import pytest

from callsim.core.models import RoleEnum
from callsim.ingestion.transcript_parser import (
    compute_stats,
    detect_delimiter,
    guess_file_kind,
    normalize_header_name,
    normalize_role,
    parse_transcript_table,
    preview_headers,
)
from callsim.resilience.error_handler import UnsupportedFormatError

CSV_SEMICOLON = (
    "IdAtendimento;Message;Role;Ordem;MotivoDeContato\n"
    "A1;Olá, quero cancelar;user;1;Cancelamento\n"
    "A1;Claro, posso ajudar;agent;2;Cancelamento\n"
    "A2;Minha fatura veio errada;user;1;Fatura\n"
    "A2;Vou verificar;bot;2;Fatura\n"
)


def _csv(text: str) -> bytes:
    return text.encode("utf-8")


class TestHelpers:
    """Tests for header, role and delimiter helpers."""

    def test_detect_delimiter_semicolon(self):
        assert detect_delimiter("a;b;c\n1;2;3") == ";"

    def test_detect_delimiter_comma(self):
        assert detect_delimiter("a,b;c\n") == ","

    def test_detect_delimiter_skips_blank_lines(self):
        assert detect_delimiter("\n\n a;b \n") == ";"

    def test_header_synonyms(self):
        assert normalize_header_name("Papel") == "role"
        assert normalize_header_name("ORDEM") == "order"
        assert normalize_header_name(" Id Atendimento ") == "attendance_id"
        assert normalize_header_name("Motivo") == "motive"

    def test_unknown_header_squashed(self):
        assert normalize_header_name("Canal De Venda") == "canaldevenda"

    def test_role_synonyms(self):
        assert normalize_role("Atendente") == ("agent", RoleEnum.OPERATOR)
        assert normalize_role("BOT") == ("bot", RoleEnum.BOT)
        assert normalize_role(" cliente ") == ("user", RoleEnum.CUSTOMER)
        assert normalize_role("supervisor") == ("supervisor", None)

    def test_guess_file_kind(self):
        assert guess_file_kind("x.csv", None) == "csv"
        assert guess_file_kind("x.xlsx", None) == "xlsx"
        assert guess_file_kind("export", "text/csv; charset=utf-8") == "csv"
        assert guess_file_kind("x.csv", "application/vnd.ms-excel") == "csv"
        assert guess_file_kind("x.pdf", "application/pdf") is None


class TestParseTranscriptTable:
    """Tests for parse_transcript_table()."""

    def test_parses_semicolon_csv(self):
        result = parse_transcript_table(_csv(CSV_SEMICOLON), "hist.csv", "text/csv")

        assert len(result.rows) == 4
        assert result.warnings == []
        first = result.rows[0]
        assert first.attendance_id == "A1"
        assert first.motive == "Cancelamento"
        assert first.seq == 1
        assert first.role_raw == "user"
        assert first.role_norm is RoleEnum.CUSTOMER
        assert first.message_text == "Olá, quero cancelar"

    def test_stats_count_distinct_ids_per_motive(self):
        result = parse_transcript_table(_csv(CSV_SEMICOLON), "hist.csv", "text/csv")

        assert result.stats.total_distinct_ids == 2
        assert result.stats.motive_distinct_ids == {"Cancelamento": 1, "Fatura": 1}

    def test_synonym_headers_comma_csv(self):
        text = "atendimento id,mensagem,papel,seq,motivo\nB1,Oi,cliente,1,Senha\n"
        result = parse_transcript_table(_csv(text), "x.csv", None)

        assert len(result.rows) == 1
        assert result.rows[0].attendance_id == "B1"
        assert result.rows[0].role_norm is RoleEnum.CUSTOMER

    def test_row_missing_role_skipped_with_warning(self):
        text = "IdAtendimento;Message;Role;Ordem;MotivoDeContato\nA1;Oi;;1;Fatura\nA1;Olá;agent;2;Fatura\n"
        result = parse_transcript_table(_csv(text), "x.csv", "text/csv")

        assert len(result.rows) == 1
        assert result.warnings == ["Linha 2: campos ausentes -> Role"]

    def test_unknown_role_kept_with_warning(self):
        text = "IdAtendimento;Message;Role;Ordem;MotivoDeContato\nA1;Oi;supervisor;1;Fatura\n"
        result = parse_transcript_table(_csv(text), "x.csv", "text/csv")

        assert len(result.rows) == 1
        assert result.rows[0].role_norm is None
        assert result.warnings == ["Linha 2: Role desconhecido (supervisor)"]

    def test_invalid_order_uses_per_id_counter(self):
        text = (
            "IdAtendimento;Message;Role;Ordem;MotivoDeContato\n"
            "A1;m1;user;x;Fatura\n"
            "A1;m2;agent;;Fatura\n"
            "A2;m3;user;abc;Fatura\n"
        )
        result = parse_transcript_table(_csv(text), "x.csv", "text/csv")

        assert [r.seq for r in result.rows] == [1, 2, 1]
        assert result.warnings[0] == "Linha 2: Ordem inválida; atribuído seq=1 automaticamente"
        assert len(result.warnings) == 3

    def test_decimal_order_accepted(self):
        text = "IdAtendimento,Message,Role,Ordem,MotivoDeContato\nA1,oi,user,3.0,Fatura\n"
        result = parse_transcript_table(_csv(text), "x.csv", "text/csv")

        assert result.rows[0].seq == 3
        assert result.warnings == []

    def test_explicit_mapping(self):
        text = "conv;fala;quem_falou;n;assunto\nC9;Bom dia;bot;1;Entrega\n"
        # exact ("n", "assunto"), case-insensitive ("CONV", "QUEM_FALOU") and normalized ("Fa la") matches
        mapping = {"idAtendimento": "CONV", "message": "Fa la", "role": "QUEM_FALOU", "ordem": "n", "motivoDeContato": "assunto"}

        result = parse_transcript_table(_csv(text), "x.csv", "text/csv", explicit_mapping=mapping)

        assert len(result.rows) == 1
        row = result.rows[0]
        assert (row.attendance_id, row.message_text, row.role_norm, row.seq, row.motive) == (
            "C9", "Bom dia", RoleEnum.BOT, 1, "Entrega"
        )

    def test_header_only_file(self):
        result = parse_transcript_table(_csv("IdAtendimento;Message;Role;Ordem;MotivoDeContato\n"), "x.csv", "text/csv")

        assert result.rows == []
        assert result.warnings == ["Nenhuma linha de dados no arquivo"]

    def test_empty_file(self):
        result = parse_transcript_table(b"", "x.csv", "text/csv")
        assert result.warnings == ["Nenhuma linha de dados no arquivo"]

    def test_xlsx_first_sheet(self):
        frame = pd.DataFrame(
            [
                {"IdAtendimento": "X1", "Message": "Quero reembolso", "Role": "user", "Ordem": 1, "MotivoDeContato": "Reembolso"},
                {"IdAtendimento": "X1", "Message": "Certo", "Role": "agent", "Ordem": 2, "MotivoDeContato": "Reembolso"},
            ]
        )
        buffer = io.BytesIO()
        frame.to_excel(buffer, index=False, engine="openpyxl")

        result = parse_transcript_table(buffer.getvalue(), "hist.xlsx", None)

        assert [r.seq for r in result.rows] == [1, 2]
        assert result.rows[1].role_norm is RoleEnum.OPERATOR

    def test_unsupported_format(self):
        with pytest.raises(UnsupportedFormatError):
            parse_transcript_table(b"%PDF", "hist.pdf", "application/pdf")

    def test_to_dict(self):
        result = parse_transcript_table(_csv(CSV_SEMICOLON), "hist.csv", "text/csv")
        assert result.to_dict()["rows"] == 4


class TestComputeStats:
    def test_empty(self):
        stats = compute_stats([])
        assert stats.total_distinct_ids == 0
        assert stats.motive_distinct_ids == {}


class TestPreviewHeaders:
    """Tests for preview_headers()."""

    def test_suggests_canonical_mapping(self):
        preview = preview_headers(_csv(CSV_SEMICOLON), "hist.csv", "text/csv")

        assert preview.delimiter == ";"
        assert preview.headers == ["IdAtendimento", "Message", "Role", "Ordem", "MotivoDeContato"]
        assert preview.suggested_mapping["role"] == "Role"
        assert preview.suggested_mapping["order"] == "Ordem"
        assert preview.canonical_complete is True
        assert len(preview.sample) == 4

    def test_incomplete_mapping(self):
        preview = preview_headers(_csv("id,texto\n1,oi\n"), "x.csv", "text/csv")

        assert preview.suggested_mapping["attendance_id"] == "id"
        assert preview.suggested_mapping["role"] is None
        assert preview.canonical_complete is False

    def test_sample_capped_at_ten_rows(self):
        lines = ["IdAtendimento;Message;Role;Ordem;MotivoDeContato"]
        lines += [f"A{i};m;user;1;M" for i in range(25)]
        preview = preview_headers(_csv("\n".join(lines)), "x.csv", "text/csv")

        assert len(preview.sample) == 10

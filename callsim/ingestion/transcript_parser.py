"""
CallSim - Transcript Table Parser
=================================

Turns CSV or spreadsheet exports of historical conversations into
canonical transcript rows.

Columns are matched to five canonical fields: attendance_id, message,
role, order, motive. Bad rows never fail the whole file; they are skipped
and reported in ``warnings`` for a human to review.
"""

import io
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from ..core.models import RoleEnum
from ..core.schemas import HeadersPreview
from ..resilience.error_handler import ParseFailureError, UnsupportedFormatError

logger = logging.getLogger(__name__)

ATTENDANCE_ID = "attendance_id"
MESSAGE = "message"
ROLE = "role"
ORDER = "order"
MOTIVE = "motive"

CANONICAL_FIELDS = (ATTENDANCE_ID, MESSAGE, ROLE, ORDER, MOTIVE)
REQUIRED_FIELDS = (ATTENDANCE_ID, MESSAGE, ROLE, MOTIVE)

# Column names as they appear in the reference export, used in warnings.
FIELD_LABELS = {
    ATTENDANCE_ID: "IdAtendimento",
    MESSAGE: "Message",
    ROLE: "Role",
    ORDER: "Ordem",
    MOTIVE: "MotivoDeContato",
}

HEADER_SYNONYMS = {
    ATTENDANCE_ID: {"idatendimento", "atendimentoid", "id", "id_atendimento", "attendance_id", "attendanceid"},
    MESSAGE: {"message", "mensagem", "texto", "text"},
    ROLE: {"role", "papel", "quem", "remetente"},
    ORDER: {"ordem", "seq", "sequencia", "ordemdasmensagens", "ordem_mensagem", "order"},
    MOTIVE: {"motivodecontato", "motivo", "cenário", "cenario", "contato", "motive"},
}

ROLE_SYNONYMS = {
    RoleEnum.OPERATOR: ("agent", {"agent", "agente", "atendente", "operator", "assistentehumano"}),
    RoleEnum.BOT: ("bot", {"bot", "assistente", "robot", "virtual"}),
    RoleEnum.CUSTOMER: ("user", {"user", "cliente", "consumidor", "pessoa"}),
}

# Explicit mappings may use the reference export's camel-case names.
MAPPING_KEY_ALIASES = {
    "idAtendimento": ATTENDANCE_ID,
    "ordem": ORDER,
    "motivoDeContato": MOTIVE,
}

MIME_CSV = "text/csv"
MIME_XLS = "application/vnd.ms-excel"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PREVIEW_SAMPLE_ROWS = 10


@dataclass
class TranscriptRecord:
    """One canonical transcript line."""

    attendance_id: str
    motive: str
    seq: int
    role_raw: str
    role_norm: RoleEnum | None
    message_text: str


@dataclass
class TranscriptStats:
    total_distinct_ids: int = 0
    motive_distinct_ids: dict[str, int] = field(default_factory=dict)


@dataclass
class TranscriptParseResult:
    rows: list[TranscriptRecord] = field(default_factory=list)
    stats: TranscriptStats = field(default_factory=TranscriptStats)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": len(self.rows),
            "total_distinct_ids": self.stats.total_distinct_ids,
            "motive_distinct_ids": dict(self.stats.motive_distinct_ids),
            "warnings": list(self.warnings),
        }


# =============================================================================
# HEADER AND VALUE NORMALIZATION
# =============================================================================


def normalize_header_name(name: Any) -> str:
    """Map a column name to its canonical key, or its squashed lower-case form."""
    squashed = "".join(str(name if name is not None else "").split()).lower()
    for canonical, synonyms in HEADER_SYNONYMS.items():
        if squashed in synonyms:
            return canonical
    return squashed


def normalize_role(value: Any) -> tuple[str, RoleEnum | None]:
    raw = str(value if value is not None else "").strip().lower()
    if not raw:
        return "", None
    for role, (canonical_raw, synonyms) in ROLE_SYNONYMS.items():
        if raw in synonyms:
            return canonical_raw, role
    return raw, None


def detect_delimiter(text: str) -> str:
    """Pick ';' when the first non-blank line has more semicolons than commas."""
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    return ";" if first_line.count(";") > first_line.count(",") else ","


def guess_file_kind(filename: str | None, mime: str | None) -> str | None:
    m = str(mime or "").lower()
    name = str(filename or "").lower()
    is_sheet_ext = name.endswith(".xlsx") or name.endswith(".xls")

    if MIME_CSV in m:
        return "csv"
    if MIME_XLS in m:
        return "xlsx" if is_sheet_ext else "csv"
    if MIME_XLSX in m:
        return "xlsx"
    if name.endswith(".csv"):
        return "csv"
    if is_sheet_ext:
        return "xlsx"
    return None


def _coerce_int(value: Any) -> int | None:
    text = str(value if value is not None else "").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _clean_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).replace("\r", "").strip()


def _lookup(record: dict[str, Any], canonical: str, mapping: dict[str, str] | None) -> Any:
    """
    Find the value of a canonical field in a record.

    An explicit mapping is tried first (exact header, case-insensitive,
    normalized), then headers are matched through the synonym table.
    """
    wanted = str((mapping or {}).get(canonical) or "").strip()
    if wanted:
        if wanted in record:
            return record[wanted]
        lowered = wanted.lower()
        for key in record:
            if str(key).strip().lower() == lowered:
                return record[key]
        target = normalize_header_name(wanted)
        for key in record:
            if normalize_header_name(key) == target:
                return record[key]

    for key in record:
        if normalize_header_name(key) == canonical:
            return record[key]
    return None


def _canonical_mapping(mapping: dict[str, str] | None) -> dict[str, str] | None:
    if not mapping:
        return None
    return {MAPPING_KEY_ALIASES.get(key, key): value for key, value in mapping.items()}


# =============================================================================
# TABLE READING
# =============================================================================


def _read_records(content: bytes, kind: str) -> tuple[list[dict[str, Any]], list[str], str | None]:
    """Return (records, headers, delimiter) for a CSV or the first sheet of a workbook."""
    if kind == "csv":
        text = content.decode("utf-8-sig", errors="replace")
        delimiter = detect_delimiter(text)
        if not text.strip():
            return [], [], delimiter
        try:
            frame = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                skipinitialspace=True,
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeError) as e:
            raise ParseFailureError(f"Could not read CSV: {e}") from e
    else:
        delimiter = None
        try:
            frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, keep_default_na=False)
        except Exception as e:
            raise ParseFailureError(f"Could not read spreadsheet: {e}") from e

    frame.columns = [str(column).strip() for column in frame.columns]
    headers = list(frame.columns)
    records = frame.to_dict(orient="records")
    return records, headers, delimiter


# =============================================================================
# PUBLIC API
# =============================================================================


def parse_transcript_table(
    content: bytes,
    filename: str | None,
    mime: str | None,
    explicit_mapping: dict[str, str] | None = None,
) -> TranscriptParseResult:
    """
    Parse a transcript export into canonical rows, statistics and warnings.

    Raises:
        UnsupportedFormatError: neither CSV nor spreadsheet
        ParseFailureError: the file could not be read as a table
    """
    kind = guess_file_kind(filename, mime)
    if kind is None:
        raise UnsupportedFormatError(
            "Unsupported transcript format; use CSV or XLSX",
            details={"filename": filename, "mime": mime},
        )

    records, _headers, _delimiter = _read_records(content, kind)
    if not records:
        return TranscriptParseResult(warnings=["Nenhuma linha de dados no arquivo"])

    mapping = _canonical_mapping(explicit_mapping)
    result = TranscriptParseResult()
    seq_tracker: dict[str, int] = defaultdict(int)

    for index, record in enumerate(records):
        line_no = index + 2
        values = {name: _lookup(record, name, mapping) for name in CANONICAL_FIELDS}
        attendance_id = _clean_cell(values[ATTENDANCE_ID])
        message = _clean_cell(values[MESSAGE])
        role_value = _clean_cell(values[ROLE])
        motive = _clean_cell(values[MOTIVE])

        cleaned = {ATTENDANCE_ID: attendance_id, MESSAGE: message, ROLE: role_value, MOTIVE: motive}
        missing = [FIELD_LABELS[name] for name in REQUIRED_FIELDS if not cleaned[name]]
        if missing:
            result.warnings.append(f"Linha {line_no}: campos ausentes -> {', '.join(missing)}")
            continue

        role_raw, role_norm = normalize_role(role_value)
        if role_norm is None:
            result.warnings.append(f"Linha {line_no}: Role desconhecido ({role_value})")

        seq = _coerce_int(values[ORDER])
        if seq is None:
            seq_tracker[attendance_id] += 1
            seq = seq_tracker[attendance_id]
            result.warnings.append(f"Linha {line_no}: Ordem inválida; atribuído seq={seq} automaticamente")

        result.rows.append(
            TranscriptRecord(
                attendance_id=attendance_id,
                motive=motive,
                seq=seq,
                role_raw=role_raw,
                role_norm=role_norm,
                message_text=message,
            )
        )

    result.stats = compute_stats(result.rows)
    logger.info(
        f"Parsed transcript table '{filename}': {len(result.rows)} rows, {len(result.warnings)} warnings",
        extra={"extra_data": {"filename": filename, "rows": len(result.rows), "warnings": len(result.warnings)}},
    )
    return result


def compute_stats(rows: list[TranscriptRecord]) -> TranscriptStats:
    ids: set[str] = set()
    motive_ids: dict[str, set[str]] = defaultdict(set)
    for row in rows:
        ids.add(row.attendance_id)
        motive_ids[row.motive.strip()].add(row.attendance_id)
    return TranscriptStats(
        total_distinct_ids=len(ids),
        motive_distinct_ids={motive: len(members) for motive, members in motive_ids.items()},
    )


def preview_headers(content: bytes, filename: str | None, mime: str | None) -> HeadersPreview:
    """Headers, suggested canonical mapping and a short sample of a transcript table."""
    kind = guess_file_kind(filename, mime)
    if kind is None:
        raise UnsupportedFormatError(
            "Unsupported transcript format; use CSV or XLSX",
            details={"filename": filename, "mime": mime},
        )

    records, headers, delimiter = _read_records(content, kind)
    suggested: dict[str, str | None] = {name: None for name in CANONICAL_FIELDS}
    for header in headers:
        canonical = normalize_header_name(header)
        if canonical in suggested and suggested[canonical] is None:
            suggested[canonical] = header

    return HeadersPreview(
        delimiter=delimiter,
        headers=headers,
        suggested_mapping=suggested,
        canonical_complete=all(suggested.values()),
        sample=records[:PREVIEW_SAMPLE_ROWS],
    )

"""
CallSim - Pydantic Validation Schemas
====================================

Language-model output is untrusted. Every payload passes through these
models before anything is persisted: unexpected shapes are dropped or
defaulted here instead of travelling further into the pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from ..resilience.error_handler import ModelOutputError

SCENARIO_TITLE_MAX = 200


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ChatMessage(BaseSchema):
    role: ChatRole
    content: str

    model_config = ConfigDict(str_strip_whitespace=False)


# =============================================================================
# GRAPH EXTRACTION PAYLOADS
# =============================================================================


NODE_TYPE_MAX = 100


def _clean_properties(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) and value else None


def _clean_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ExtractedNode(BaseSchema):
    label: str = Field(..., min_length=1, max_length=500)
    node_type: str | None = None
    properties: dict[str, Any] | None = None

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("node_type", mode="before")
    @classmethod
    def _node_type(cls, v):
        text = _clean_optional_str(v)
        return text[:NODE_TYPE_MAX].rstrip() if text else None

    @field_validator("properties", mode="before")
    @classmethod
    def _properties(cls, v):
        return _clean_properties(v)

    @property
    def key(self) -> str:
        return normalize_label(self.label)


class ExtractedEdge(BaseSchema):
    src_label: str = Field(..., min_length=1, max_length=500)
    dst_label: str = Field(..., min_length=1, max_length=500)
    relation: str = Field(..., min_length=1, max_length=255)
    properties: dict[str, Any] | None = None

    @field_validator("src_label", "dst_label", "relation", mode="before")
    @classmethod
    def _required_text(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("properties", mode="before")
    @classmethod
    def _properties(cls, v):
        return _clean_properties(v)


class GraphPayload(BaseSchema):
    nodes: list[ExtractedNode] = Field(default_factory=list)
    edges: list[ExtractedEdge] = Field(default_factory=list)

    @classmethod
    def from_model_output(cls, data: Any) -> "GraphPayload":
        """
        Build a payload from decoded model JSON.

        Nodes without a label and edges missing an endpoint or relation are
        discarded. A non-object payload raises ModelOutputError.
        """
        if not isinstance(data, dict):
            raise ModelOutputError("Graph payload is not a JSON object", details={"type": type(data).__name__})

        nodes = _validate_items(ExtractedNode, data.get("nodes"))
        edges = _validate_items(ExtractedEdge, data.get("edges"))
        return cls(nodes=nodes, edges=edges)


def _validate_items(model: type[BaseModel], items: Any) -> list:
    if not isinstance(items, list):
        return []
    valid = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            valid.append(model.model_validate(item))
        except ValidationError:
            continue
    return valid


def normalize_label(label: str) -> str:
    return " ".join(label.split()).lower()


# =============================================================================
# MOTIVE ANALYSIS PAYLOADS
# =============================================================================


class MotiveSummaryPayload(BaseSchema):
    scenario_title: str
    customer_profiles: list[str] = Field(default_factory=list)
    process_text: str | None = None
    operator_guidelines: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)

    @field_validator("customer_profiles", "operator_guidelines", "patterns", mode="before")
    @classmethod
    def _string_list(cls, v):
        if not isinstance(v, list):
            return []
        return [str(item).strip() for item in v if isinstance(item, (str, int, float)) and str(item).strip()]

    @field_validator("process_text", mode="before")
    @classmethod
    def _process_text(cls, v):
        return v if isinstance(v, str) else None

    @classmethod
    def from_model_output(cls, data: Any, motive: str) -> "MotiveSummaryPayload":
        """Validate a motive synthesis; the title falls back to the motive."""
        if not isinstance(data, dict):
            raise ModelOutputError("Motive summary is not a JSON object", details={"type": type(data).__name__})

        title = data.get("scenario_title")
        title = str(title).strip() if title not in (None, "") else ""
        return cls(
            scenario_title=(title or motive)[:SCENARIO_TITLE_MAX],
            customer_profiles=data.get("customer_profiles"),
            process_text=data.get("process_text"),
            operator_guidelines=data.get("operator_guidelines"),
            patterns=data.get("patterns"),
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "title": self.scenario_title,
            "customer_profiles": self.customer_profiles,
            "process_text": self.process_text,
            "operator_guidelines": self.operator_guidelines,
            "patterns": self.patterns,
        }


# =============================================================================
# TRANSCRIPT TABLES AND REPORTS
# =============================================================================


class HeadersPreview(BaseSchema):
    delimiter: str | None = None
    headers: list[str] = Field(default_factory=list)
    suggested_mapping: dict[str, str | None] = Field(default_factory=dict)
    canonical_complete: bool = False
    sample: list[dict[str, Any]] = Field(default_factory=list)


class MotiveProgressReport(BaseSchema):
    motive: str
    total: int = 0
    processed: int = 0
    cached: bool = False

    @property
    def percent(self) -> float:
        return round(100.0 * self.processed / self.total, 1) if self.total else 0.0


class RunProgressReport(BaseSchema):
    run_id: UUID
    status: str
    motives: list[MotiveProgressReport] = Field(default_factory=list)
    total: int = 0
    processed: int = 0
    updated_at: datetime | None = None

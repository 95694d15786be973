"""
CallSim - Knowledge Graph Queries
=================================

Read-side helpers for the knowledge graph: full export for rendering and
the neighbourhood of a single node. Labels and properties are anonymized
unless pii_mode is "raw".

Usage:
    from callsim.distillation import export_graph

    graph = export_graph(factory, tenant_id, kb_type="operator")
    print(graph.counts)
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import aliased, sessionmaker

from ..core.db import coerce_kb_type, get_session
from ..core.models import KnowledgeEdge, KnowledgeNode
from ..security.pii import anonymize_recursive

DEFAULT_LIMIT_NODES = 1000
DEFAULT_LIMIT_EDGES = 2000
DEFAULT_LIMIT_NEIGHBORS = 500


@dataclass
class GraphExport:
    """Nodes and edges of a tenant graph."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    edges: list[dict[str, Any]] = field(default_factory=list)
    kb_type: str | None = None

    @property
    def counts(self) -> dict[str, int]:
        return {"nodes": len(self.nodes), "edges": len(self.edges)}

    def to_dict(self) -> dict[str, Any]:
        return {"nodes": self.nodes, "edges": self.edges, "kb_type": self.kb_type, "counts": self.counts}


def _node_dict(node: KnowledgeNode, pii_mode: str) -> dict[str, Any]:
    return {
        "id": str(node.id),
        "label": anonymize_recursive(node.label, pii_mode),
        "node_type": node.node_type,
        "source_id": str(node.source_id) if node.source_id else None,
        "kb_type": node.kb_type.value,
        "properties": anonymize_recursive(node.properties or {}, pii_mode),
    }


def _edge_dict(edge: KnowledgeEdge, pii_mode: str) -> dict[str, Any]:
    return {
        "id": str(edge.id),
        "src_node_id": str(edge.src_node_id),
        "dst_node_id": str(edge.dst_node_id),
        "relation": edge.relation,
        "kb_type": edge.kb_type.value,
        "properties": anonymize_recursive(edge.properties or {}, pii_mode),
    }


def _edge_query(tenant_id: UUID, kb, source_id: UUID | None):
    stmt = select(KnowledgeEdge).where(KnowledgeEdge.tenant_id == tenant_id)
    if kb is not None:
        stmt = stmt.where(KnowledgeEdge.kb_type == kb)
    if source_id is not None:
        # Both endpoints must belong to the source.
        src = aliased(KnowledgeNode)
        dst = aliased(KnowledgeNode)
        stmt = (
            stmt.join(src, src.id == KnowledgeEdge.src_node_id)
            .join(dst, dst.id == KnowledgeEdge.dst_node_id)
            .where(src.source_id == source_id, dst.source_id == source_id)
        )
    return stmt


def export_graph(
    session_factory: sessionmaker | None,
    tenant_id: UUID,
    kb_type=None,
    limit_nodes: int = DEFAULT_LIMIT_NODES,
    limit_edges: int = DEFAULT_LIMIT_EDGES,
    pii_mode: str = "default",
    source_id: UUID | None = None,
) -> GraphExport:
    """Return up to limit_nodes nodes and limit_edges edges of the tenant graph."""
    kb = coerce_kb_type(kb_type) if kb_type is not None else None

    with get_session(session_factory) as session:
        node_stmt = select(KnowledgeNode).where(KnowledgeNode.tenant_id == tenant_id)
        if kb is not None:
            node_stmt = node_stmt.where(KnowledgeNode.kb_type == kb)
        if source_id is not None:
            node_stmt = node_stmt.where(KnowledgeNode.source_id == source_id)
        node_stmt = node_stmt.order_by(KnowledgeNode.created_at, KnowledgeNode.id).limit(max(1, limit_nodes))

        edge_stmt = _edge_query(tenant_id, kb, source_id)
        edge_stmt = edge_stmt.order_by(KnowledgeEdge.created_at, KnowledgeEdge.id).limit(max(1, limit_edges))

        nodes = [_node_dict(n, pii_mode) for n in session.scalars(node_stmt)]
        edges = [_edge_dict(e, pii_mode) for e in session.scalars(edge_stmt)]

    return GraphExport(nodes=nodes, edges=edges, kb_type=kb.value if kb else None)


def get_neighbors(
    session_factory: sessionmaker | None,
    tenant_id: UUID,
    node_id: UUID,
    kb_type=None,
    limit: int = DEFAULT_LIMIT_NEIGHBORS,
    pii_mode: str = "default",
    source_id: UUID | None = None,
) -> GraphExport:
    """Return the edges touching node_id and the nodes at either end."""
    kb = coerce_kb_type(kb_type) if kb_type is not None else None

    with get_session(session_factory) as session:
        edge_stmt = (
            _edge_query(tenant_id, kb, source_id)
            .where(or_(KnowledgeEdge.src_node_id == node_id, KnowledgeEdge.dst_node_id == node_id))
            .order_by(KnowledgeEdge.created_at, KnowledgeEdge.id)
            .limit(max(1, limit))
        )
        edges = list(session.scalars(edge_stmt))

        node_ids = {node_id}
        for edge in edges:
            node_ids.update((edge.src_node_id, edge.dst_node_id))
        nodes = session.scalars(
            select(KnowledgeNode)
            .where(KnowledgeNode.tenant_id == tenant_id, KnowledgeNode.id.in_(node_ids))
            .order_by(KnowledgeNode.created_at, KnowledgeNode.id)
        ).all()

        return GraphExport(
            nodes=[_node_dict(n, pii_mode) for n in nodes],
            edges=[_edge_dict(e, pii_mode) for e in edges],
            kb_type=kb.value if kb else None,
        )

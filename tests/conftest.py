"""Pytest configuration and fixtures for CallSim tests."""
import json
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from callsim.core.db import create_test_engine
from callsim.core.models import (
    KbTypeEnum,
    KnowledgeChunk,
    KnowledgeSource,
    SourceKindEnum,
    SourceStatusEnum,
    Tenant,
)
from callsim.llm.embeddings import fit_dimension

VOCABULARY = ["cancelamento", "plano", "fatura", "senha", "entrega", "reembolso", "cliente", "atendente"]


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine with the full schema."""
    engine = create_test_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def tenant(session_factory):
    """Create a test tenant."""
    with session_factory() as session:
        t = Tenant(id=uuid4(), name=f"tenant-{uuid4().hex[:8]}")
        session.add(t)
        session.commit()
    return t


class FakeLLM:
    """Completion service returning canned replies in order and recording prompts."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, messages):
        self.calls.append(list(messages))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply

    def prompt(self, call_index=-1) -> str:
        return "\n".join(m.content for m in self.calls[call_index])


class WordEncoder:
    """Tokenizer double with one token per whitespace-separated word."""

    def encode(self, text):
        return text.split()

    def decode(self, tokens):
        return " ".join(tokens)


@pytest.fixture(autouse=True)
def word_tokens(monkeypatch):
    """Count chunk tokens by words so tests never fetch tiktoken encoding files."""
    monkeypatch.setattr("callsim.ingestion.chunker.get_encoder", lambda name=None: WordEncoder())


class KeywordEmbedder:
    """Deterministic embedder counting vocabulary words, padded to the column width."""

    def __init__(self, dimension=1536):
        self.dimension = dimension
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            words = text.lower().split()
            counts = [float(sum(1 for w in words if w.strip(".,;!?") == term)) for term in VOCABULARY]
            vectors.append(fit_dimension(counts, self.dimension))
        return vectors


@pytest.fixture
def fake_llm():
    return FakeLLM


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def make_chunk(session_factory, tenant):
    """Insert a source with one chunk per text and return the source id."""

    def _make(texts, kb_type=KbTypeEnum.OPERATOR, title="Manual", status=SourceStatusEnum.ACTIVE,
              tenant_id=None, embeddings=None):
        tenant_id = tenant_id or tenant.id
        with session_factory() as session:
            source = KnowledgeSource(
                tenant_id=tenant_id,
                kb_type=kb_type,
                source_kind=SourceKindEnum.FREE_TEXT,
                title=title,
                status=status,
            )
            session.add(source)
            session.flush()
            for i, text in enumerate(texts):
                session.add(KnowledgeChunk(
                    source_id=source.id,
                    tenant_id=tenant_id,
                    kb_type=kb_type,
                    chunk_no=i + 1,
                    content=text,
                    token_count=len(text.split()),
                    embedding=embeddings[i] if embeddings else None,
                ))
            session.commit()
            return source.id

    return _make

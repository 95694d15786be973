"""Tests for settings loading and derived configuration."""
from callsim.config import Settings
from callsim.distillation.graph_extractor import GraphExtractionConfig
from callsim.ingestion.canonicalizer import CanonicalizerConfig
from callsim.lab.motive_analyzer import MotiveAnalysisConfig
from callsim.retrieval.vector_retriever import RetrieverConfig


class TestSettings:
    """Tests for Settings defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.UPLOAD_MAX_MB == 10
        assert settings.RAG_TOP_K == 8
        assert settings.LAB_MAX_SAMPLE_ATT == 25
        assert settings.use_azure is False
        assert "application/pdf" in settings.allowed_mime_types

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("UPLOAD_MAX_MB", "3")
        monkeypatch.setenv("UPLOAD_ALLOWED_MIME", " Text/Plain , application/pdf,")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com")

        settings = Settings(_env_file=None)

        assert settings.UPLOAD_MAX_MB == 3
        assert settings.allowed_mime_types == frozenset({"text/plain", "application/pdf"})
        assert settings.use_azure is True


class TestComponentConfigs:
    """Tests for from_settings() constructors."""

    def test_canonicalizer_config(self):
        config = CanonicalizerConfig.from_settings(Settings(_env_file=None, UPLOAD_MAX_MB=2))
        assert config.byte_limit == 2 * 1024 * 1024

    def test_retriever_top_k_at_least_one(self):
        assert RetrieverConfig.from_settings(Settings(_env_file=None, RAG_TOP_K=0)).top_k == 1

    def test_graph_limit(self):
        assert GraphExtractionConfig.from_settings(Settings(_env_file=None, GRAPH_LIMIT_CHUNKS=50)).limit_chunks == 50

    def test_lab_bounds(self):
        config = MotiveAnalysisConfig.from_settings(
            Settings(_env_file=None, LAB_MAX_SAMPLE_ATT=0, LAB_MAX_TRANSCRIPT_CHARS=10)
        )
        assert config.max_sample == 1
        assert config.max_transcript_chars == 1000

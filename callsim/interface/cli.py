"""CallSim CLI - Command-line interface."""

import argparse
import json
import mimetypes
import sys
from pathlib import Path
from uuid import UUID

from dotenv import load_dotenv
from sqlalchemy import text

from ..config import get_settings
from ..core.db import get_engine, get_or_create_tenant_id, get_session, get_session_factory, init_db
from ..observability.logging_config import setup_logging_from_settings
from ..resilience.error_handler import CallSimError


class CallSimCLI:
    """Command-line interface for the CallSim knowledge pipeline."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory
        self.parser = self._create_parser()

    def _create_parser(self):
        parser = argparse.ArgumentParser(prog="callsim", description="CallSim knowledge pipeline CLI")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init", help="Create the database schema")
        subparsers.add_parser("verify-db", help="Check the database connection")

        ingest_parser = subparsers.add_parser("ingest", help="Ingest a PDF, DOCX or text document")
        ingest_parser.add_argument("path", help="Path to the document")
        ingest_parser.add_argument("--kb-type", required=True, help="client or operator")
        ingest_parser.add_argument("--title", help="Source title (defaults to the file name)")
        ingest_parser.add_argument("--mime", help="MIME type (guessed from the extension if omitted)")
        ingest_parser.add_argument("--raw", action="store_true", help="Store text without PII masking")

        query_parser = subparsers.add_parser("query", help="Retrieve the nearest knowledge chunks")
        query_parser.add_argument("text", help="Query text")
        query_parser.add_argument("--kb-type", required=True, help="client or operator")
        query_parser.add_argument("--top-k", type=int, help="Number of results")

        graph_parser = subparsers.add_parser("extract-graph", help="Build the knowledge graph from chunks")
        graph_parser.add_argument("--kb-type", required=True, help="client or operator")
        graph_parser.add_argument("--limit", type=int, help="Maximum chunks to process")
        graph_parser.add_argument("--source-id", type=UUID, help="Restrict to one source")

        import_parser = subparsers.add_parser("import-transcripts", help="Load a transcript CSV/XLSX as a new run")
        import_parser.add_argument("path", help="Path to the transcript table")
        import_parser.add_argument("--name", help="Run name")
        import_parser.add_argument("--mapping", help='JSON column mapping, e.g. \'{"role": "Papel"}\'')

        analyze_parser = subparsers.add_parser("analyze", help="Run the motive analysis of a run")
        analyze_parser.add_argument("run_id", type=UUID, help="Analysis run id")

        progress_parser = subparsers.add_parser("progress", help="Show analysis progress")
        progress_parser.add_argument("run_id", type=UUID, help="Analysis run id")
        progress_parser.add_argument("--json", action="store_true", help="Output as JSON")

        for sub in (ingest_parser, query_parser, graph_parser, import_parser, analyze_parser, progress_parser):
            sub.add_argument("--tenant", default="default", help="Tenant name")

        return parser

    def run(self, args=None):
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handler = getattr(self, f"cmd_{parsed.command.replace('-', '_')}", None)
        if handler is None:
            print(f"Unknown command: {parsed.command}")
            return 1
        try:
            return handler(parsed)
        except CallSimError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 2

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @property
    def factory(self):
        return self.session_factory or get_session_factory()

    def _tenant_id(self, name: str) -> UUID:
        with get_session(self.factory) as session:
            return get_or_create_tenant_id(session, name)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def cmd_init(self, args):
        print("Initializing database...")
        init_db()
        print("Database initialized successfully!")
        return 0

    def cmd_verify_db(self, args):
        engine = get_engine()
        print(f"Connecting to: {engine.url.render_as_string(hide_password=True).split('@')[-1]}")
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        print("Database connection successful!")
        return 0

    def cmd_ingest(self, args):
        from ..ingestion import KnowledgeIngestService

        path = Path(args.path)
        mime = args.mime or mimetypes.guess_type(path.name)[0] or ""
        service = KnowledgeIngestService.from_settings(get_settings(), self.factory)
        result = service.ingest_document(
            self._tenant_id(args.tenant),
            args.kb_type,
            path.read_bytes(),
            path.name,
            mime,
            title=args.title,
            pii_mode="raw" if args.raw else "default",
        )
        print(f"Source {result.source_id}: {result.chunks_created} chunks, {result.embeddings_generated} embeddings")
        return 0

    def cmd_query(self, args):
        from ..llm import Embedder
        from ..retrieval import RetrieverConfig, VectorRetriever

        settings = get_settings()
        retriever = VectorRetriever(Embedder.from_settings(settings), self.factory, RetrieverConfig.from_settings(settings))
        for rank, chunk in enumerate(retriever.retrieve(self._tenant_id(args.tenant), args.kb_type, args.text, args.top_k), 1):
            print(f"{rank}. [{chunk.distance:.4f}] {chunk.source_title}: {chunk.content[:200]}")
        return 0

    def cmd_extract_graph(self, args):
        from ..distillation import GraphExtractionConfig, GraphExtractor
        from ..llm import CompletionClient

        settings = get_settings()
        extractor = GraphExtractor(
            CompletionClient.from_settings(settings), self.factory, GraphExtractionConfig.from_settings(settings)
        )
        summary = extractor.run_extraction(
            self._tenant_id(args.tenant), args.kb_type, limit_chunks=args.limit, source_id=args.source_id
        )
        print(json.dumps(summary.to_dict(), indent=2))
        return 0

    def cmd_import_transcripts(self, args):
        from ..ingestion import TranscriptImportService

        path = Path(args.path)
        mapping = json.loads(args.mapping) if args.mapping else None
        result = TranscriptImportService(self.factory).import_transcripts(
            self._tenant_id(args.tenant),
            path.read_bytes(),
            path.name,
            mimetypes.guess_type(path.name)[0],
            name=args.name,
            explicit_mapping=mapping,
        )
        print(f"Run {result.run_id}: {result.inserted_rows} rows, {result.total_distinct_ids} attendances")
        for warning in result.warnings:
            print(f"  - {warning}")
        return 0

    def cmd_analyze(self, args):
        from ..lab import MotiveAnalysisConfig, MotiveBatchAnalyzer
        from ..llm import CompletionClient

        settings = get_settings()
        analyzer = MotiveBatchAnalyzer(
            CompletionClient.from_settings(settings), self.factory, MotiveAnalysisConfig.from_settings(settings)
        )
        status = analyzer.run(args.run_id, self._tenant_id(args.tenant))
        if status is None:
            print(f"Run {args.run_id} not found")
            return 1
        print(f"Run {args.run_id}: {status.value}")
        return 0 if status.value == "completed" else 1

    def cmd_progress(self, args):
        from ..lab import get_run_progress

        report = get_run_progress(self.factory, args.run_id, self._tenant_id(args.tenant))
        if report is None:
            print(f"Run {args.run_id} not found")
            return 1
        if args.json:
            print(report.model_dump_json(indent=2))
            return 0
        print(f"Run {report.run_id} [{report.status}] {report.processed}/{report.total}")
        for motive in report.motives:
            cached = " (cached)" if motive.cached else ""
            print(f"  {motive.motive}: {motive.processed}/{motive.total} ({motive.percent}%){cached}")
        return 0


def cli_main():
    """Main entry point for CLI."""
    load_dotenv()
    setup_logging_from_settings(get_settings())
    cli = CallSimCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    cli_main()

import argparse
import logging
import sys
from typing import Any, Dict

from .core.db.db import DatabaseManager, wait_for_db


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("backoff").setLevel(logging.ERROR)


logger = logging.getLogger(__name__)


def build_services(settings, db_manager: DatabaseManager) -> Dict[str, Any]:
    """Wire every component from one Settings instance."""
    from .core.budget import BudgetGate, CostLedger
    from .core.categories import CategoryResolver
    from .core.gateway import CompletionGateway, EmbeddingGateway
    from .core.interpreter import QueryInterpreter
    from .core.pipeline import (
        ComparisonCache,
        ComparisonEngine,
        ComparisonPipeline,
        ComparisonWorker,
        DeepAnalysisPipeline,
        QueuedAnalysisProcessor,
    )
    from .core.progress import ProgressHub
    from .core.ranking import ComparisonRanker
    from .core.search import RelevanceScorer
    from .core.sources import (
        AnalysisStore,
        DeepAnalyzer,
        GitHubSearchClient,
        RepositoryAnalyzer,
        RepositoryStore,
        SourceAggregator,
        TrendingSync,
    )

    ledger = CostLedger()
    completion = CompletionGateway(ledger=ledger, db_manager=db_manager)
    embeddings = EmbeddingGateway(model=settings.embedding_model)
    resolver = CategoryResolver.from_settings(settings, embedding_service=embeddings)

    github = GitHubSearchClient.from_settings(settings)
    if not github.authenticated:
        logger.warning("GITHUB_TOKEN not set; GitHub search is limited to anonymous rate limits")

    repository_store = RepositoryStore()
    analysis_store = AnalysisStore(deep_expiration_days=settings.deep_analysis_expiration_days)
    analyzer = RepositoryAnalyzer(
        completion,
        resolver,
        model=settings.analyzer_model,
        repository_store=repository_store,
        analysis_store=analysis_store,
    )
    aggregator = SourceAggregator(
        github,
        analyzer=analyzer,
        repository_store=repository_store,
        max_limit=settings.max_fetch_limit,
        reanalyze_after_days=settings.reanalyze_after_days,
    )
    pipeline = ComparisonPipeline(
        db_manager,
        QueryInterpreter(completion, model=settings.interpreter_model),
        aggregator,
        ComparisonRanker(completion, resolver, model=settings.ranker_model),
        cache=ComparisonCache.from_settings(settings),
        fetch_limit=settings.fetch_limit,
        grace_seconds=settings.subscriber_grace_seconds,
    )
    deep_pipeline = DeepAnalysisPipeline(
        db_manager,
        DeepAnalyzer(completion, github, model=settings.deep_analyzer_model, analysis_store=analysis_store),
    )

    hub = ProgressHub()
    worker = ComparisonWorker(
        db_manager,
        hub,
        pipeline,
        deep_pipeline=deep_pipeline,
        poll_interval=settings.worker_poll_interval,
        max_concurrent=settings.worker_concurrency,
        max_attempts=settings.job_max_attempts,
        base_backoff_seconds=settings.job_base_backoff_seconds,
    )
    engine = ComparisonEngine(
        db_manager,
        BudgetGate(db_manager, settings),
        worker=worker,
        scorer=RelevanceScorer.from_settings(settings),
        ledger=ledger,
    )

    return {
        "engine": engine,
        "hub": hub,
        "worker": worker,
        "resolver": resolver,
        "trending": TrendingSync.from_settings(db_manager, github, settings),
        "batch": QueuedAnalysisProcessor.from_settings(db_manager, analyzer, settings),
    }


def main():
    """Main entry point for repocompare."""
    parser = argparse.ArgumentParser(description="repocompare - AI-ranked GitHub repository comparisons")
    parser.add_argument(
        "--port",
        type=int,
        default=9010,
        help="Port for the API server"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML settings file (defaults to REPOCOMPARE_CONFIG or config/repocompare.yaml)"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--sync-trending",
        action="store_true",
        help="Sync trending repositories into the analysis queue, then exit"
    )
    mode.add_argument(
        "--process-queue",
        action="store_true",
        help="Process one batch of queued analyses, then exit"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    from .setting import load_settings
    settings = load_settings(args.config)

    db_manager = DatabaseManager(settings.database_url)
    if not wait_for_db(db_manager):
        logger.error("Database unavailable; exiting")
        sys.exit(1)
    db_manager.create_tables()

    services = build_services(settings, db_manager)

    if args.sync_trending:
        stats = services["trending"].sync()
        logger.info(f"Trending sync: {stats}")
        return
    if args.process_queue:
        result = services["batch"].process_batch()
        with db_manager.get_session() as session:
            backfilled = services["resolver"].backfill_embeddings(session)
        logger.info(f"Queue batch: {result.to_dict()}, embeddings backfilled: {backfilled}")
        return

    # Build FastAPI app
    from .api.app import create_app
    app = create_app(
        engine=services["engine"],
        db_manager=db_manager,
        hub=services["hub"],
        settings=settings,
    )
    services["worker"].start()

    # Launch with uvicorn
    import uvicorn

    logger.info(f"Starting FastAPI server on http://0.0.0.0:{args.port}")
    print(f"\n  repocompare is running at: http://localhost:{args.port}")
    print(f"  API docs at: http://localhost:{args.port}/docs\n")

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=args.port,
            log_level=args.log_level.lower(),
        )
    finally:
        services["worker"].stop()


if __name__ == "__main__":
    main()

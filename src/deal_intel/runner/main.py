"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..codification import CodificationService, FastPassMatcher, SmartPassCodifier, seed_catalog
from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..document_store import DocumentStoreClient
from ..errors import DealIntelError
from ..intelligence import IntelligenceService
from ..llm import LLMClient
from ..pipeline import ExtractionPipeline
from ..services import ExtractionQueueService
from ..state_store import JobStatus, StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="deal-intel",
        description="Extract and codify financial line items from deal documents",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # enqueue command
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a document for extraction")
    enqueue_parser.add_argument("--document-id", required=True, help="Document ID")
    enqueue_parser.add_argument("--client-id", required=True, help="Owning client ID")
    enqueue_parser.add_argument("--file-ref", required=True, help="File reference in the store")
    enqueue_parser.add_argument("--name", required=True, help="Document file name")
    enqueue_parser.add_argument("--project-id", help="Owning project ID")

    # process-queue command
    process_parser = subparsers.add_parser("process-queue", help="Process pending extraction jobs")
    process_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum jobs to process (default: queue.batch_size)",
    )
    process_parser.add_argument(
        "--job-id",
        type=int,
        help="Process a specific pending job",
    )

    # queue-status command
    queue_status_parser = subparsers.add_parser("queue-status", help="Show extraction queue")
    queue_status_parser.add_argument(
        "--status",
        choices=[s.value for s in JobStatus],
        help="List jobs with this status",
    )
    queue_status_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum jobs to list (default: 20)",
    )

    # requeue-stale command
    stale_parser = subparsers.add_parser("requeue-stale", help="Recover jobs stuck in processing")
    stale_parser.add_argument(
        "--minutes",
        type=int,
        help="Lease timeout in minutes (default: queue.stale_after_minutes)",
    )

    # retry-job command
    retry_parser = subparsers.add_parser("retry-job", help="Reset a failed job to pending")
    retry_parser.add_argument("job_id", type=int, help="Job ID")

    # seed-catalog command
    seed_parser = subparsers.add_parser("seed-catalog", help="Load canonical codes and aliases")
    seed_parser.add_argument(
        "--file",
        type=Path,
        help="Seed YAML file (default: built-in catalog)",
    )

    # smart-pass command
    smart_parser = subparsers.add_parser("smart-pass", help="Suggest codes for unmatched items")
    smart_parser.add_argument("document_id", help="Document ID")
    smart_parser.add_argument(
        "--confirm-all",
        action="store_true",
        help="Confirm every suggestion afterwards",
    )

    # merge-intelligence command
    merge_parser = subparsers.add_parser(
        "merge-intelligence", help="Merge document facts into a client/project record"
    )
    merge_parser.add_argument(
        "--category",
        required=True,
        help="Document category (valuation, bank_statement, planning_decision, kyc)",
    )
    merge_parser.add_argument("--entity-id", required=True, help="Client or project ID")
    merge_parser.add_argument("--file", type=Path, required=True, help="JSON file with the facts")
    merge_parser.add_argument("--document-id", help="Source document ID")
    merge_parser.add_argument("--document-name", help="Source document name")

    # status command
    subparsers.add_parser("status", help="Show pipeline status and statistics")

    return parser


def _build_queue_service(config: Config, store: StateStore) -> ExtractionQueueService:
    llm_client = LLMClient(config.llm)
    return ExtractionQueueService(
        state_store=store,
        config=config,
        document_store=DocumentStoreClient(
            base_url=config.document_store.base_url,
            token=config.document_store.token,
            timeout=config.document_store.timeout_seconds,
            max_retries=config.document_store.max_retries,
        ),
        pipeline=ExtractionPipeline(llm_client, config.llm),
        matcher=FastPassMatcher(store, threshold=config.codification.fuzzy_threshold),
    )


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write a default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_enqueue(
    config: Config,
    document_id: str,
    client_id: str,
    file_ref: str,
    name: str,
    project_id: str | None,
) -> int:
    """Queue a document for extraction."""
    store = StateStore(config.state_db_path)
    job_id = store.create_job(
        document_id=document_id,
        client_id=client_id,
        file_ref=file_ref,
        document_name=name,
        project_id=project_id,
        max_attempts=config.queue.max_attempts,
    )
    job = store.get_job(job_id)
    print(f"📥 Job #{job_id} for document {document_id} ({job.status.value if job else 'unknown'})")
    return 0


def cmd_process_queue(config: Config, limit: int | None, job_id: int | None) -> int:
    """Process pending extraction jobs."""
    try:
        config.validate_or_raise()
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 1

    store = StateStore(config.state_db_path)
    service = _build_queue_service(config, store)

    print("📊 Processing extraction queue...")
    try:
        batch = service.process_batch(limit=limit, job_id=job_id)
    except DealIntelError as e:
        print(f"❌ {e}")
        return 1
    finally:
        service.pipeline.llm_client.close()
        service.document_store.close()

    for outcome in batch.results:
        if outcome.success:
            print(f"  ✓ #{outcome.job_id} {outcome.document_id}: {outcome.items_extracted} items")
        elif outcome.status == JobStatus.SKIPPED:
            print(f"  ⏭️  #{outcome.job_id} {outcome.document_id}: {outcome.error}")
        else:
            print(
                f"  ❌ #{outcome.job_id} {outcome.document_id} -> {outcome.status.value}: "
                f"{outcome.error}"
            )

    print(
        f"\n✓ Processed {batch.processed} job(s): {batch.successful} successful, "
        f"{batch.failed} failed, {batch.skipped} skipped"
    )
    return 0 if batch.failed == 0 else 2


def cmd_queue_status(config: Config, status: str | None, limit: int) -> int:
    """Show queue counts and, optionally, a job listing."""
    store = StateStore(config.state_db_path)
    stats = store.get_queue_stats()

    print("\n📋 Extraction Queue")
    print("=" * 40)
    for job_status in JobStatus:
        print(f"  {job_status.value.capitalize():<12} {stats[job_status.value]:>6}")
    print(f"  {'Total':<12} {stats['total']:>6}")

    if status:
        print()
        for job in store.list_jobs(status=status, limit=limit):
            error = f" | {job.last_error}" if job.last_error else ""
            print(
                f"  #{job.id:<5} {job.document_name:<40} "
                f"attempts {job.attempts}/{job.max_attempts}{error}"
            )
    print()
    return 0


def cmd_requeue_stale(config: Config, minutes: int | None) -> int:
    """Recover stale processing jobs."""
    store = StateStore(config.state_db_path)
    recovered = store.requeue_stale_jobs(minutes or config.queue.stale_after_minutes)
    for job in recovered:
        print(f"  🔄 #{job.id} {job.document_name} -> {job.status.value}")
    print(f"✓ Recovered {len(recovered)} stale job(s)")
    return 0


def cmd_retry_job(config: Config, job_id: int) -> int:
    """Reset a failed job to pending."""
    store = StateStore(config.state_db_path)
    job = store.get_job(job_id)
    if job is None:
        print(f"❌ Job #{job_id} not found")
        return 1
    if not store.retry_job(job_id):
        print(f"❌ Job #{job_id} is {job.status.value}, only failed jobs can be retried")
        return 1
    print(f"✓ Job #{job_id} reset to pending")
    return 0


def cmd_seed_catalog(config: Config, seed_file: Path | None) -> int:
    """Load the canonical code catalog."""
    store = StateStore(config.state_db_path)
    counts = seed_catalog(store, seed_file)
    print(
        f"✓ Seeded {counts['codes_created']} code(s), {counts['aliases_created']} alias(es) "
        f"({counts['aliases_existing']} already present)"
    )
    return 0


def cmd_smart_pass(config: Config, document_id: str, confirm_all: bool) -> int:
    """Run Smart Pass on a document's unmatched items."""
    store = StateStore(config.state_db_path)
    with LLMClient(config.llm) as llm_client:
        codifier = SmartPassCodifier(
            llm_client,
            model=config.llm.model_for("codify"),
            temperature=config.llm.codify_temperature,
            max_tokens=config.llm.codify_max_tokens,
            alias_sample_size=config.codification.alias_sample_size,
        )
        service = CodificationService(store, codifier, config.codification.alias_sample_size)

        try:
            result = service.run_smart_pass(document_id)
        except DealIntelError as e:
            print(f"❌ {e}")
            return 1

    print(f"🧠 Smart Pass for document {document_id}")
    for suggestion in result.suggestions:
        marker = "🆕" if suggestion.is_new_code else "  "
        print(
            f"  {marker} {suggestion.original_name:<40} -> {suggestion.suggested_code} "
            f"({suggestion.confidence:.2f})"
        )
    if result.used_fallback:
        print("  ⚠️  Heuristic fallback used for some items")
    if result.new_codes:
        print(f"  {len(result.new_codes)} new code(s) proposed")

    if confirm_all:
        confirmed = service.confirm_all_suggested(document_id)
        print(f"✓ Confirmed {confirmed} item(s)")

    stats = service.get_mapping_stats(document_id)
    print(f"\n  Mapping: {json.dumps(stats.to_dict())}")
    return 0


def cmd_merge_intelligence(
    config: Config,
    category: str,
    entity_id: str,
    facts_file: Path,
    document_id: str | None,
    document_name: str | None,
) -> int:
    """Merge extracted document facts into an intelligence record."""
    try:
        data = json.loads(facts_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Could not read {facts_file}: {e}")
        return 1

    store = StateStore(config.state_db_path)
    service = IntelligenceService(store)
    try:
        stats = service.merge_document(
            category,
            entity_id,
            data,
            document_id=document_id,
            document_name=document_name or facts_file.name,
        )
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print(
        f"✓ Merged into {entity_id}: {stats.added} added, {stats.updated} updated, "
        f"{stats.skipped} skipped"
    )
    return 0


def cmd_status(config: Config) -> int:
    """Show pipeline status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Jobs total:             {stats['jobs']['total']}")
    print(f"  Jobs pending:           {stats['jobs']['pending']}")
    print(f"  Jobs failed:            {stats['jobs']['failed']}")
    print(f"  Canonical codes:        {stats['canonical_codes']}")
    print(f"  Aliases:                {stats['aliases']}")
    print(f"  Codified extractions:   {stats['codified_extractions']}")
    print(f"  Items pending review:   {stats['items']['pending_review']}")
    print(f"  Items suggested:        {stats['items']['suggested']}")
    print(f"  Intelligence entities:  {stats['intelligence_entities']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "enqueue":
        return cmd_enqueue(
            config,
            parsed.document_id,
            parsed.client_id,
            parsed.file_ref,
            parsed.name,
            parsed.project_id,
        )
    elif parsed.command == "process-queue":
        return cmd_process_queue(config, parsed.limit, parsed.job_id)
    elif parsed.command == "queue-status":
        return cmd_queue_status(config, parsed.status, parsed.limit)
    elif parsed.command == "requeue-stale":
        return cmd_requeue_stale(config, parsed.minutes)
    elif parsed.command == "retry-job":
        return cmd_retry_job(config, parsed.job_id)
    elif parsed.command == "seed-catalog":
        return cmd_seed_catalog(config, parsed.file)
    elif parsed.command == "smart-pass":
        return cmd_smart_pass(config, parsed.document_id, parsed.confirm_all)
    elif parsed.command == "merge-intelligence":
        return cmd_merge_intelligence(
            config,
            parsed.category,
            parsed.entity_id,
            parsed.file,
            parsed.document_id,
            parsed.document_name,
        )
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())

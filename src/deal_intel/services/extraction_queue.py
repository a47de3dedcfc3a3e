"""
Extraction Job Queue Service.

Drives documents through download -> read -> pipeline -> Fast Pass and owns
the job state machine.

Features:
- Idempotent enqueue (one job per document)
- Atomic batch claiming, safe for parallel drivers
- Bounded retries, optional fail-fast for non-retryable errors
- Stale processing lease recovery
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..document_store.reader import read_document
from ..errors import (
    DealIntelError,
    DocumentNotFoundError,
    JobNotFoundError,
    UnsupportedDocumentError,
)
from ..state_store.sqlite_store import ExtractionJob, JobStatus, StateStore

if TYPE_CHECKING:
    from ..codification.fast_pass import FastPassMatcher
    from ..config import Config
    from ..document_store.client import DocumentStoreClient
    from ..pipeline.extraction import ExtractionPipeline

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Result of processing one job."""

    job_id: int
    document_id: str
    success: bool
    status: JobStatus
    error: str | None = None
    items_extracted: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "document_id": self.document_id,
            "success": self.success,
            "status": self.status.value,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.items_extracted is not None:
            data["items_extracted"] = self.items_extracted
        return data


@dataclass
class BatchResult:
    """Summary of one batch-driver invocation."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[JobOutcome] = field(default_factory=list)

    def add(self, outcome: JobOutcome) -> None:
        self.processed += 1
        self.results.append(outcome)
        if outcome.success:
            self.successful += 1
        elif outcome.status == JobStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


class ExtractionQueueService:
    """
    Service for the extraction job queue.

    Jobs are processed one at a time, stages in fixed order.
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        document_store: DocumentStoreClient,
        pipeline: ExtractionPipeline,
        matcher: FastPassMatcher,
    ):
        """
        Initialize the queue service.

        Args:
            state_store: State store for job persistence
            config: Application configuration
            document_store: Client resolving and downloading files
            pipeline: Extraction pipeline
            matcher: Fast Pass matcher
        """
        self.store = state_store
        self.config = config
        self.document_store = document_store
        self.pipeline = pipeline
        self.matcher = matcher

    def enqueue(
        self,
        document_id: str,
        client_id: str,
        file_ref: str,
        document_name: str,
        project_id: str | None = None,
    ) -> int:
        """
        Create the extraction job for a document.

        Returns:
            Job ID; the existing one when the document is already queued
        """
        job_id = self.store.create_job(
            document_id=document_id,
            client_id=client_id,
            file_ref=file_ref,
            document_name=document_name,
            project_id=project_id,
            max_attempts=self.config.queue.max_attempts,
        )
        logger.info(f"Queued extraction job #{job_id} for document {document_id}")
        return job_id

    def process_batch(self, limit: int | None = None, job_id: int | None = None) -> BatchResult:
        """
        Claim and process pending jobs.

        Args:
            limit: Maximum jobs to claim (default: queue.batch_size)
            job_id: Process only this job; it must be pending

        Returns:
            BatchResult with one outcome per processed job
        """
        batch = BatchResult()

        if job_id is not None:
            if not self.store.start_processing(job_id):
                logger.warning(f"Job #{job_id} is not pending, nothing to process")
                return batch
            job = self.store.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            jobs = [job]
        else:
            jobs = self.store.claim_next_jobs(limit or self.config.queue.batch_size)

        if not jobs:
            logger.debug("No pending extraction jobs")
            return batch

        for job in jobs:
            batch.add(self.process_job(job))

        logger.info(
            f"Batch done: {batch.processed} processed, {batch.successful} successful, "
            f"{batch.failed} failed, {batch.skipped} skipped"
        )
        return batch

    def process_job(self, job: ExtractionJob) -> JobOutcome:
        """
        Process one claimed job and record its outcome.

        Never raises for job-level failures; the job ends completed, pending
        (retry), failed or skipped.
        """
        logger.info(
            f"Processing extraction job #{job.id} for document {job.document_id} "
            f"(attempt {job.attempts}/{job.max_attempts})"
        )

        try:
            url = self.document_store.get_file_url(job.file_ref)
            if not url:
                raise DocumentNotFoundError(f"File not found in storage: {job.file_ref}")

            content = read_document(self.document_store.download(url), job.document_name)
            result = self.pipeline.run(content, job.document_name)
            fast_pass = self.matcher.run(result.extracted, document_id=job.document_id)

            extraction_id = self.store.save_codified_extraction(
                document_id=job.document_id,
                items=fast_pass.items,
                client_id=job.client_id,
                project_id=job.project_id,
                job_id=job.id,
            )

            summary = result.to_summary()
            summary["fast_pass"] = {
                "matched": fast_pass.stats.matched_count,
                "pending": fast_pass.stats.pending_count,
                "total": fast_pass.stats.total_count,
            }
            self.store.complete_job(job.id, result_ref=extraction_id, result=summary)

            logger.info(
                f"Extraction job #{job.id} completed: {fast_pass.stats.total_count} items, "
                f"{fast_pass.stats.matched_count} matched by Fast Pass"
            )
            return JobOutcome(
                job_id=job.id,
                document_id=job.document_id,
                success=True,
                status=JobStatus.COMPLETED,
                items_extracted=fast_pass.stats.total_count,
            )

        except UnsupportedDocumentError as e:
            self.store.skip_job(job.id, str(e))
            logger.info(f"Extraction job #{job.id} skipped: {e}")
            return JobOutcome(
                job_id=job.id,
                document_id=job.document_id,
                success=False,
                status=JobStatus.SKIPPED,
                error=str(e),
            )

        except Exception as e:
            retryable = e.retryable if isinstance(e, DealIntelError) else True
            can_retry = retryable or not self.config.queue.fail_fast_on_terminal_errors
            if isinstance(e, DealIntelError):
                logger.error(f"Extraction job #{job.id} failed: {e}")
            else:
                logger.exception(f"Extraction job #{job.id} failed unexpectedly: {e}")

            error_message = str(e) or type(e).__name__
            status = self.store.fail_job(job.id, error_message, can_retry=can_retry)
            return JobOutcome(
                job_id=job.id,
                document_id=job.document_id,
                success=False,
                status=status,
                error=error_message,
            )

    def requeue_stale(self, timeout_minutes: int | None = None) -> list[ExtractionJob]:
        """Recover jobs stuck in processing past the lease timeout."""
        timeout = timeout_minutes or self.config.queue.stale_after_minutes
        recovered = self.store.requeue_stale_jobs(timeout)
        if recovered:
            logger.info(f"Recovered {len(recovered)} stale extraction jobs")
        return recovered

    def retry_job(self, job_id: int) -> bool:
        """Reset a failed job to pending."""
        if self.store.get_job(job_id) is None:
            raise JobNotFoundError(job_id)
        retried = self.store.retry_job(job_id)
        if retried:
            logger.info(f"Extraction job #{job_id} reset to pending")
        return retried

    def get_queue_stats(self) -> dict[str, int]:
        """Get queue statistics."""
        return self.store.get_queue_stats()

    def cleanup_old_jobs(self, days: int = 30) -> int:
        """Remove old terminal jobs."""
        count = self.store.cleanup_old_jobs(days)
        if count:
            logger.info(f"Cleaned up {count} old extraction jobs")
        return count

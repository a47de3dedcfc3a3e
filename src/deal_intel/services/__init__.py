"""Queue services driving documents through extraction."""

from deal_intel.services.extraction_queue import BatchResult, ExtractionQueueService, JobOutcome

__all__ = ["BatchResult", "ExtractionQueueService", "JobOutcome"]

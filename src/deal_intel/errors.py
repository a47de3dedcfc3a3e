"""
Error taxonomy for the extraction pipeline.

Every failure that can end a job attempt is one of these classes. The
``retryable`` attribute tells the queue whether another attempt can change
the outcome; the default queue policy still retries everything until
``max_attempts`` is reached unless fail-fast is configured.
"""


class DealIntelError(Exception):
    """Base exception for all pipeline errors."""

    retryable = True


class ContentError(DealIntelError):
    """Document is empty or unreadable."""

    retryable = False


class UnsupportedDocumentError(ContentError):
    """Document format cannot be turned into text; the job is skipped."""


class LLMError(DealIntelError):
    """Base exception for language-model failures."""


class TransientProviderError(LLMError):
    """Network, timeout, rate-limit or non-2xx response from the model provider."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ParseError(LLMError):
    """Model returned content that could not be parsed as the expected JSON."""

    def __init__(self, message: str, raw_content: str | None = None):
        self.raw_content = raw_content
        super().__init__(f"parse error: {message}")


class NotFoundError(DealIntelError):
    """A referenced document, job or code does not exist."""

    retryable = False


class JobNotFoundError(NotFoundError):
    """Extraction job id is unknown."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Extraction job {job_id} not found")


class DocumentNotFoundError(NotFoundError):
    """File is missing from the document store."""


class CodeNotFoundError(NotFoundError):
    """Canonical code is not in the catalog."""


class ExtractionNotFoundError(NotFoundError):
    """No codified extraction exists for the document."""


class DuplicateCodeError(DealIntelError):
    """Canonical code string is already registered."""

    retryable = False

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Canonical code already exists: {code}")

"""
Document store access.

Provides:
- Resolve file references to download URLs
- Download file bytes with retry/backoff
- Render downloaded files as text for extraction
"""

from .client import (
    DocumentStoreAPIError,
    DocumentStoreClient,
    DocumentStoreConnectionError,
    DocumentStoreError,
)
from .reader import read_document, rows_to_markdown

__all__ = [
    "DocumentStoreAPIError",
    "DocumentStoreClient",
    "DocumentStoreConnectionError",
    "DocumentStoreError",
    "read_document",
    "rows_to_markdown",
]

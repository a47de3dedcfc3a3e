"""
CLI runner module.

Provides commands:
- enqueue / process-queue: Queue and extract documents
- queue-status / requeue-stale / retry-job: Queue maintenance
- seed-catalog / smart-pass: Codification
- merge-intelligence: Client/project intelligence records
- status: Pipeline statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]

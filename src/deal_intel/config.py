"""
Configuration management (SSOT).

This module defines ALL configuration for the deal-intel pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Thresholds and confidences live in [0, 1]
- The fuzzy-match threshold is inclusive (score >= threshold matches)
- Per-stage model names fall back to llm.model when unset
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class DocumentStoreConfig:
    """Document store (file storage) configuration."""

    base_url: str = "http://localhost:8000"
    token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class LLMConfig:
    """Language-model provider configuration.

    SSOT for LLM settings:
    - provider: "ollama" (/api/chat) or "openai" (OpenAI-compatible chat completions)
    - auth_header: Optional raw auth header for proxied deployments
    - max_concurrent: Concurrency limiter for queue management
    """

    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    # Bearer key for OpenAI-compatible providers (Together.ai etc.)
    api_key: str | None = None
    # Format: "Bearer <token>" or "Header-Name: value"
    auth_header: str | None = None
    model: str = "qwen2.5:7b-instruct-q4_K_M"
    # Per-stage overrides (None = use model)
    model_extract: str | None = None
    model_normalize: str | None = None
    model_verify: str | None = None
    model_codify: str | None = None
    timeout_seconds: int = 120
    max_concurrent: int = 2
    extract_temperature: float = 0.2
    normalize_temperature: float = 0.2
    verify_temperature: float = 0.1
    codify_temperature: float = 0.3
    extract_max_tokens: int = 15000
    normalize_max_tokens: int = 15000
    verify_max_tokens: int = 15000
    codify_max_tokens: int = 4000

    def model_for(self, stage: str) -> str:
        """Get the model name for a pipeline stage."""
        override = getattr(self, f"model_{stage}", None)
        return override or self.model

    def is_remote(self) -> bool:
        """Check if the LLM URL is remote (not localhost)."""
        url_lower = self.base_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class QueueConfig:
    """Extraction job queue settings."""

    # Jobs per batch-driver invocation
    batch_size: int = 5
    max_attempts: int = 3
    # A processing job older than this is considered abandoned
    stale_after_minutes: int = 30
    # Fail non-retryable errors (ContentError, NotFoundError) immediately
    fail_fast_on_terminal_errors: bool = False


@dataclass
class CodificationConfig:
    """Fast Pass / Smart Pass settings."""

    fuzzy_threshold: float = 0.85
    # Known aliases shown per code in the Smart Pass prompt
    alias_sample_size: int = 5


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    document_store: DocumentStoreConfig = field(default_factory=DocumentStoreConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    codification: CodificationConfig = field(default_factory=CodificationConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.document_store.base_url:
            errors.append("document_store.base_url is required")

        if self.llm.provider not in ("ollama", "openai"):
            errors.append(f"llm.provider must be 'ollama' or 'openai', got '{self.llm.provider}'")
        if not self.llm.base_url:
            errors.append("llm.base_url is required")
        if self.llm.provider == "openai" and not (self.llm.api_key or self.llm.auth_header):
            errors.append("llm.api_key is required for the openai provider")
        if self.llm.max_concurrent < 1:
            errors.append("llm.max_concurrent must be >= 1")

        if not 0.0 <= self.codification.fuzzy_threshold <= 1.0:
            errors.append("codification.fuzzy_threshold must be between 0 and 1")
        if self.codification.alias_sample_size < 0:
            errors.append("codification.alias_sample_size must be >= 0")

        if self.queue.max_attempts < 1:
            errors.append("queue.max_attempts must be >= 1")
        if self.queue.batch_size < 1:
            errors.append("queue.batch_size must be >= 1")
        if self.queue.stale_after_minutes < 1:
            errors.append("queue.stale_after_minutes must be >= 1")

        return errors

    def validate_or_raise(self) -> None:
        """Raise ConfigValidationError if the configuration is invalid."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return int(default)
    try:
        return int(value)
    except ValueError:
        return int(default)  # Keep default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - DEAL_INTEL_STORE_URL
    - DEAL_INTEL_STORE_TOKEN
    - DEAL_INTEL_LLM_PROVIDER (ollama/openai)
    - DEAL_INTEL_LLM_URL
    - DEAL_INTEL_LLM_API_KEY
    - DEAL_INTEL_LLM_MODEL
    - DEAL_INTEL_LLM_TIMEOUT (request timeout in seconds)
    - DEAL_INTEL_STATE_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Document store
    store_data = data.get("document_store", {})
    document_store = DocumentStoreConfig(
        base_url=os.environ.get(
            "DEAL_INTEL_STORE_URL", store_data.get("base_url", "http://localhost:8000")
        ),
        token=os.environ.get("DEAL_INTEL_STORE_TOKEN", store_data.get("token", "")),
        timeout_seconds=store_data.get("timeout_seconds", 30),
        max_retries=store_data.get("max_retries", 3),
    )

    # LLM
    llm_data = data.get("llm", {})
    llm = LLMConfig(
        provider=os.environ.get("DEAL_INTEL_LLM_PROVIDER", llm_data.get("provider", "ollama")),
        base_url=os.environ.get(
            "DEAL_INTEL_LLM_URL", llm_data.get("base_url", "http://localhost:11434")
        ),
        api_key=os.environ.get("DEAL_INTEL_LLM_API_KEY", llm_data.get("api_key")),
        auth_header=llm_data.get("auth_header"),
        model=os.environ.get(
            "DEAL_INTEL_LLM_MODEL", llm_data.get("model", "qwen2.5:7b-instruct-q4_K_M")
        ),
        model_extract=llm_data.get("model_extract"),
        model_normalize=llm_data.get("model_normalize"),
        model_verify=llm_data.get("model_verify"),
        model_codify=llm_data.get("model_codify"),
        timeout_seconds=_env_int("DEAL_INTEL_LLM_TIMEOUT", llm_data.get("timeout_seconds", 120)),
        max_concurrent=llm_data.get("max_concurrent", 2),
        extract_temperature=llm_data.get("extract_temperature", 0.2),
        normalize_temperature=llm_data.get("normalize_temperature", 0.2),
        verify_temperature=llm_data.get("verify_temperature", 0.1),
        codify_temperature=llm_data.get("codify_temperature", 0.3),
        extract_max_tokens=llm_data.get("extract_max_tokens", 15000),
        normalize_max_tokens=llm_data.get("normalize_max_tokens", 15000),
        verify_max_tokens=llm_data.get("verify_max_tokens", 15000),
        codify_max_tokens=llm_data.get("codify_max_tokens", 4000),
    )

    # Queue
    queue_data = data.get("queue", {})
    queue = QueueConfig(
        batch_size=queue_data.get("batch_size", 5),
        max_attempts=queue_data.get("max_attempts", 3),
        stale_after_minutes=queue_data.get("stale_after_minutes", 30),
        fail_fast_on_terminal_errors=queue_data.get("fail_fast_on_terminal_errors", False),
    )

    # Codification
    codification_data = data.get("codification", {})
    codification = CodificationConfig(
        fuzzy_threshold=float(codification_data.get("fuzzy_threshold", 0.85)),
        alias_sample_size=codification_data.get("alias_sample_size", 5),
    )

    # State DB
    state_db = os.environ.get("DEAL_INTEL_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        document_store=document_store,
        llm=llm,
        queue=queue,
        codification=codification,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# deal-intel pipeline configuration

# File storage holding uploaded deal documents
document_store:
  base_url: "http://localhost:8000"
  token: "YOUR_STORE_TOKEN"
  timeout_seconds: 30
  max_retries: 3

# Language model provider
# provider: "ollama" (local/LAN/remote Ollama) or "openai" (OpenAI-compatible API)
llm:
  provider: "ollama"
  base_url: "http://localhost:11434"
  api_key: null                            # Required for provider "openai"
  auth_header: null                        # Optional auth header for proxied deployments
  model: "qwen2.5:7b-instruct-q4_K_M"      # Default model for all stages
  model_extract: null                      # Per-stage overrides
  model_normalize: null
  model_verify: null
  model_codify: null
  timeout_seconds: 120
  max_concurrent: 2                        # Max concurrent LLM requests
  extract_temperature: 0.2
  normalize_temperature: 0.2
  verify_temperature: 0.1
  codify_temperature: 0.3

# Extraction job queue
queue:
  batch_size: 5                            # Jobs per process-queue run
  max_attempts: 3                          # Attempts before a job is failed
  stale_after_minutes: 30                  # Requeue processing jobs older than this
  fail_fast_on_terminal_errors: false      # Fail empty/missing documents immediately

# Codification
codification:
  fuzzy_threshold: 0.85                    # Fast Pass fuzzy match (inclusive)
  alias_sample_size: 5                     # Aliases per code in Smart Pass prompt

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)

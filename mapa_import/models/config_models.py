from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the processo/testemunha import tool.

These are the typed values produced by mapa_import.config.loader after YAML
parsing and schema validation. Every phase receives the piece it needs
explicitly; nothing reads configuration from module globals.
"""


@dataclass(frozen=True)
class ImportOptions:
    """Caller-supplied normalization and correction switches."""
    explode_lists: bool = True  # one record per CNJs_Como_Testemunha element
    standardize_cnj: bool = True  # strip non-digits from process numbers
    apply_default_reu: bool = False  # fill blank Reu_Nome from default_reu_name
    intelligent_corrections: bool = True  # produce CorrectionSuggestions
    default_reu_name: str | None = None


@dataclass(frozen=True)
class PublisherConfig:
    """Staging/publish tuning for the version publisher."""
    chunk_size: int = 1000  # rows per committed insert batch
    stage_timeout_seconds: float = 480.0  # large files took ~8 minutes upstream
    max_attempts: int = 3
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 8.0


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import run."""
    options: ImportOptions = field(default_factory=ImportOptions)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    issue_log_directory: str = "./logs"

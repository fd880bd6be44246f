"""Configuration models describing vfxcat settings."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VfxcatBaseModel(BaseModel):
    """Shared configuration for vfxcat Pydantic settings models."""

    model_config = ConfigDict(extra="forbid")


class ScanSettings(VfxcatBaseModel):
    """Defaults applied when a scan or watch request omits its filters.

    Attributes:
        include_patterns: Glob patterns a file must match to be indexed.
        exclude_patterns: Glob patterns that remove a file from the index.
        scan_dirs: Subdirectories of the project root to restrict scanning to.
    """

    include_patterns: List[str] = Field(default_factory=lambda: ["*.nk", "*.aep"])
    exclude_patterns: List[str] = Field(default_factory=list)
    scan_dirs: List[str] = Field(default_factory=list)


class WatchSettings(VfxcatBaseModel):
    """Settings that govern filesystem watch subscriptions.

    Attributes:
        debounce_seconds: Quiet period applied per path before an event is applied.
        queue_size: Capacity of the per-project event queue.
        stop_timeout_seconds: Maximum time to wait for watch threads on stop.
        error_backoff_seconds: Delay applied after a failed delta application.
    """

    debounce_seconds: float = 0.5
    queue_size: int = 4096
    stop_timeout_seconds: float = 5.0
    error_backoff_seconds: float = 1.0

    @field_validator("debounce_seconds")
    @classmethod
    def _non_negative_debounce(cls, value: float) -> float:
        if value < 0:
            raise ValueError("debounce_seconds must not be negative")
        return value

    @field_validator("queue_size")
    @classmethod
    def _positive_queue(cls, value: int) -> int:
        if value < 1:
            raise ValueError("queue_size must be at least 1")
        return value


class StateSettings(VfxcatBaseModel):
    """Settings for the JSON index mirror.

    Attributes:
        persist: Whether scans write a JSON mirror of the index.
        directory: Directory holding one mirror file per project.
    """

    persist: bool = True
    directory: str = "~/.vfxcat/state"


class LoggingSettings(VfxcatBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
    """

    level: str = "WARNING"


class CLIOptions(VfxcatBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class VfxcatConfig(VfxcatBaseModel):
    """Top-level configuration struct for vfxcat.

    Attributes:
        scan: Default scan filters.
        watch: Watch subscription settings.
        state: Index mirror settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    scan: ScanSettings = Field(default_factory=ScanSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "VfxcatBaseModel",
    "ScanSettings",
    "WatchSettings",
    "StateSettings",
    "LoggingSettings",
    "CLIOptions",
    "VfxcatConfig",
]

# src/scriptmap/core/config.py
"""
Configuration schema and loading for scriptmap job chains.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

Paths:
    shared_root is the root of the distributed filesystem and is resolved
    relative to the settings file. Script locations, the input dataset path
    and work_dir are all relative to shared_root.
"""

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from scriptmap.contracts import MapErrorPolicy, OutputMode, OutputSpec, ScriptUnit, WorkerSlot


class DatasetSettings(BaseModel):
    """Input dataset (partition source plugin) configuration.

    Example YAML:
        dataset:
          plugin: jsonl
          options:
            path: data/people
    """

    model_config = {"frozen": True}

    plugin: str = Field(default="jsonl", description="Partition source plugin name")
    options: dict[str, Any] = Field(default_factory=dict, description="Plugin-specific options")


class StoreSettings(BaseModel):
    """External graph store configuration.

    options configure the store plugin (e.g. url for "sql"). Scripts open
    connections with the store defaults, or pass their own options to
    store.open(), e.g. a connection string taken from their args.
    """

    model_config = {"frozen": True}

    plugin: str = Field(description="Graph store plugin name (e.g. 'sql', 'memory')")
    options: dict[str, Any] = Field(default_factory=dict, description="Store plugin options")


class JobSettings(BaseModel):
    """One script step in the chain.

    Example YAML:
        jobs:
          - name: copy-father-name
            script: scripts/father_name.py
            args: ["sqlite:///graph.db"]
            output: noop
            external_writes: true
    """

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(description="Job identifier (unique within chain)")
    script: str = Field(description="Script location on the distributed filesystem")
    args: list[str] = Field(default_factory=list, description="Arguments passed to setup/map/cleanup")
    output: OutputMode = Field(default=OutputMode.MATERIALIZE, description="materialize or noop")
    format: str | None = Field(default=None, description="Materialized dataset format (default jsonl)")
    external_writes: bool = Field(default=False, description="Script writes to the external store")
    on_map_error: MapErrorPolicy = Field(
        default=MapErrorPolicy.SKIP_AND_CONTINUE,
        description="Per-vertex map() failure policy",
    )
    fail_fast: bool = Field(default=False, description="Cancel remaining partitions on first partition failure")
    result_key: str = Field(default="result", description="Property storing non-vertex map() results")

    @field_validator("args", mode="before")
    @classmethod
    def coerce_args(cls, v: Any) -> Any:
        """YAML scalars (numbers, booleans) become strings - args are strings."""
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    @model_validator(mode="after")
    def validate_output(self) -> "JobSettings":
        if self.output == OutputMode.NOOP and self.format is not None:
            raise ValueError(f"job '{self.name}': format is only valid with materialize output")
        if self.external_writes and self.output != OutputMode.NOOP:
            raise ValueError(
                f"job '{self.name}': external_writes requires output: noop "
                "(side-effect writes must not also be materialized)"
            )
        return self

    def to_output_spec(self) -> OutputSpec:
        if self.output == OutputMode.NOOP:
            return OutputSpec.noop()
        return OutputSpec.materialize(self.format or "jsonl")

    def to_script_unit(self) -> ScriptUnit:
        return ScriptUnit(location=self.script, args=tuple(self.args))


class RetrySettings(BaseModel):
    """Partition retry configuration.

    max_attempts is the TOTAL number of lifecycle runs per partition,
    so max_attempts=3 means: run, re-run, re-run.
    """

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Maximum lifecycle runs per partition")
    initial_delay_seconds: float = Field(default=1.0, ge=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=60.0, ge=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Random jitter added to each delay")


class SlotSettings(BaseModel):
    """A worker slot at a physical location."""

    model_config = {"frozen": True}

    id: str = Field(description="Slot identifier (ties broken by lowest id)")
    location: str = Field(description="Host/rack the slot runs on")
    capacity: int = Field(default=1, gt=0, description="Concurrent workers the slot can host")

    def to_slot(self) -> WorkerSlot:
        return WorkerSlot(slot_id=self.id, location=self.location, capacity=self.capacity)


def _default_slots() -> list[SlotSettings]:
    return [SlotSettings(id="local-0", location="localhost")]


class SchedulerSettings(BaseModel):
    """Locality-aware scheduling configuration.

    Example YAML:
        scheduler:
          locality_wait_seconds: 2.0
          slots:
            - {id: a1, location: rack-a, capacity: 2}
            - {id: b1, location: rack-b}
          topology:
            - [rack-a, core]
            - [rack-b, core]
    """

    model_config = {"frozen": True}

    slots: list[SlotSettings] = Field(default_factory=_default_slots, description="Available worker slots")
    locality_wait_seconds: float = Field(
        default=0.5,
        ge=0,
        description="How long a partition waits for a co-located slot before falling back",
    )
    topology: list[tuple[str, str]] = Field(default_factory=list, description="Undirected links between locations")

    @field_validator("slots")
    @classmethod
    def validate_slots(cls, v: list[SlotSettings]) -> list[SlotSettings]:
        if not v:
            raise ValueError("at least one worker slot is required")
        ids = [slot.id for slot in v]
        duplicates = sorted({slot_id for slot_id in ids if ids.count(slot_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate slot id(s): {duplicates}")
        return v

    @property
    def total_capacity(self) -> int:
        return sum(slot.capacity for slot in self.slots)

    def worker_slots(self) -> list[WorkerSlot]:
        return [slot.to_slot() for slot in self.slots]


class ScriptMapSettings(BaseModel):
    """Top-level configuration for a job chain run.

    This is the single source of truth for chain configuration.
    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    dataset: DatasetSettings = Field(description="Original input dataset (read by the first job)")
    jobs: list[JobSettings] = Field(description="Ordered script steps (one or more)")
    store: StoreSettings | None = Field(default=None, description="External graph store")
    shared_root: Path = Field(default=Path("."), description="Distributed filesystem root")
    work_dir: Path = Field(
        default=Path(".scriptmap/work"),
        description="Intermediate datasets, relative to shared_root",
    )
    retry: RetrySettings = Field(default_factory=RetrySettings, description="Partition retry behavior")
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings, description="Worker slots and locality")

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v: list[JobSettings]) -> list[JobSettings]:
        if not v:
            raise ValueError("At least one job is required")
        names = [job.name for job in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate job name(s): {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_store_for_external_writes(self) -> "ScriptMapSettings":
        writers = [job.name for job in self.jobs if job.external_writes]
        if writers and self.store is None:
            raise ValueError(f"store is required by jobs with external_writes: {writers}")
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # No env var and no default - keep original (will likely cause error)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def load_settings(config_path: Path) -> ScriptMapSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (SCRIPTMAP_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: SCRIPTMAP_RETRY__MAX_ATTEMPTS for nested keys.
    A relative shared_root is resolved against the settings file's directory.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated ScriptMapSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="SCRIPTMAP",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    shared_root = Path(raw_config.get("shared_root", "."))
    if not shared_root.is_absolute():
        shared_root = (config_path.parent / shared_root).resolve()
    raw_config["shared_root"] = shared_root

    return ScriptMapSettings(**raw_config)


# Option keys whose values must not reach logs or the CLI
_SECRET_FIELD_NAMES = frozenset({"password", "token", "secret", "api_key", "credential"})
_URL_PASSWORD = re.compile(r"(?P<prefix>://[^:/@]+:)(?P<password>[^@]+)@")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: ("***" if k.lower() in _SECRET_FIELD_NAMES else _redact(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    if isinstance(value, str):
        return _URL_PASSWORD.sub(r"\g<prefix>***@", value)
    return value


def resolve_config(settings: ScriptMapSettings) -> dict[str, Any]:
    """Settings as a JSON-safe dict with secrets redacted, for display and logs."""
    redacted: dict[str, Any] = _redact(settings.model_dump(mode="json"))
    return redacted

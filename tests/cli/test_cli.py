# tests/cli/test_cli.py
"""Tests for the scriptmap CLI."""

import json
import logging
import shutil
from pathlib import Path
from typing import Any

import pytest
import structlog
from typer.testing import CliRunner

from scriptmap.cli import app
from scriptmap.contracts import Vertex
from scriptmap.core.partitioning import write_partitioned_dataset
from tests.conftest import build_people

# Stderr may be mixed into stdout depending on the Click version; JSON is
# therefore located by its first line rather than parsed from all output.
runner = CliRunner()

UPPER_SCRIPT = """\
def setup(args):
    pass

def map(vertex, args):
    return {"upper": vertex.get("name").upper()}

def cleanup(args):
    pass
"""

BROKEN_SCRIPT = """\
def setup(args):
    raise RuntimeError("cannot start")

def map(vertex, args):
    return None

def cleanup(args):
    pass
"""


def _json_line(output: str, prefix: str = '{"chain_id"') -> dict[str, Any]:
    line = next(line for line in output.splitlines() if line.startswith(prefix))
    loaded: dict[str, Any] = json.loads(line)
    return loaded


def _json_block(output: str) -> dict[str, Any]:
    lines = output.splitlines()
    start = lines.index("{")
    end = lines.index("}", start)
    loaded: dict[str, Any] = json.loads("\n".join(lines[start : end + 1]))
    return loaded


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A shared root with a 3-partition people dataset and two scripts."""
    people: list[Vertex] = build_people(12)
    shards = {v.id: f"shard-{(int(v.id) - 1) // 4}" for v in people}
    write_partitioned_dataset(tmp_path / "data" / "people", people, 3, shards.get)
    (tmp_path / "scripts").mkdir()
    (tmp_path / "scripts" / "upper.py").write_text(UPPER_SCRIPT)
    (tmp_path / "scripts" / "broken.py").write_text(BROKEN_SCRIPT)
    return tmp_path


def _settings(project: Path, jobs: str, extra: str = "") -> Path:
    settings = project / "settings.yaml"
    settings.write_text(
        f"""
shared_root: .
work_dir: work
dataset:
  plugin: jsonl
  options:
    path: data/people
jobs:
{jobs}
retry:
  max_attempts: 2
  initial_delay_seconds: 0
  jitter_seconds: 0
{extra}
"""
    )
    return settings


UPPER_JOB = """\
  - name: upper
    script: scripts/upper.py
"""

BROKEN_JOB = """\
  - name: broken
    script: scripts/broken.py
"""

LOCALITY = """\
store:
  plugin: memory
  options:
    name: people
    shard_locations:
      shard-0: rack-a
      shard-1: rack-b
      shard-2: rack-c
scheduler:
  locality_wait_seconds: 0
  slots:
    - {id: a1, location: rack-a}
    - {id: b1, location: rack-b}
    - {id: c1, location: rack-c}
"""


class TestCLIBasics:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "scriptmap version" in result.stdout

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("run", "validate", "plan", "partition", "plugins", "config"):
            assert command in result.stdout

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "nope.env"), "plugins", "list"])

        assert result.exit_code == 1


class TestValidateCommand:
    def test_valid_settings(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB + BROKEN_JOB)

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(settings)])

        assert result.exit_code == 0, result.output
        assert "Configuration valid!" in result.stdout
        assert "Jobs: upper, broken" in result.stdout

    def test_script_without_contract(self, project: Path) -> None:
        (project / "scripts" / "nomap.py").write_text("def setup(args):\n    pass\n")
        settings = _settings(project, "  - name: nomap\n    script: scripts/nomap.py\n")

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(settings)])

        assert result.exit_code == 1
        assert "Configuration valid!" not in result.stdout

    def test_missing_settings_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1

    def test_invalid_settings(self, project: Path) -> None:
        settings = _settings(project, "  - name: upper\n    script: scripts/upper.py\n    output: sideways\n")

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(settings)])

        assert result.exit_code == 1

    def test_unknown_store_plugin(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB, "store:\n  plugin: neo4j\n")

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(settings)])

        assert result.exit_code == 1


class TestRunCommand:
    def test_console_summary(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB)

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings)])

        assert result.exit_code == 0, result.output
        assert "[0] upper: 3 partitions" in result.stdout
        assert ": succeeded" in result.stdout
        assert "vertices mapped: 12" in result.stdout
        assert "Final output: work/" in result.stdout

    def test_json_summary(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB)

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings), "--format", "json"])

        assert result.exit_code == 0, result.output
        summary = _json_line(result.stdout)
        assert summary["status"] == "succeeded"
        job = summary["jobs"][0]
        assert job["partitions"] == {"succeeded": 3, "failed": 0, "cancelled": 0, "skipped": 0}
        assert job["vertices_mapped"] == 12
        assert (project / summary["final_output"] / "_partitions.json").exists()

    def test_failed_job_exits_nonzero(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB + BROKEN_JOB)

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings), "--format", "json"])

        assert result.exit_code == 1
        summary = _json_line(result.stdout)
        assert summary["status"] == "failed"
        assert summary["failed_job_index"] == 1
        assert summary["error"]["job"] == "broken"
        assert summary["error"]["partition"] == 0
        assert [job["status"] for job in summary["jobs"]] == ["succeeded", "failed"]

    def test_failed_job_console(self, project: Path) -> None:
        settings = _settings(project, BROKEN_JOB)

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings), "--verbose"])

        assert result.exit_code == 1
        assert "partition 0: failed after 2 attempt(s)" in result.stdout


class TestPlanCommand:
    def test_every_partition_co_located(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB, LOCALITY)

        result = runner.invoke(app, ["--no-dotenv", "plan", "-s", str(settings)])

        assert result.exit_code == 0, result.output
        assert "partition     0 -> a1 @ rack-a  [local]" in result.stdout
        assert "3/3 partitions co-located" in result.stdout

    def test_missing_dataset(self, project: Path) -> None:
        settings = _settings(project, UPPER_JOB)
        shutil.rmtree(project / "data")

        result = runner.invoke(app, ["--no-dotenv", "plan", "-s", str(settings)])

        assert result.exit_code == 1


class TestPartitionCommand:
    def test_writes_dataset(self, tmp_path: Path) -> None:
        input_file = tmp_path / "people.jsonl"
        input_file.write_text("\n".join(json.dumps(v.to_dict()) for v in build_people(10)) + "\n")
        shard_map = tmp_path / "shards.json"
        shard_map.write_text(json.dumps({str(i): f"s{(i - 1) // 5}" for i in range(1, 11)}))
        output_dir = tmp_path / "dataset"

        result = runner.invoke(
            app,
            ["--no-dotenv", "partition", str(input_file), str(output_dir), "-n", "4", "--shard-map", str(shard_map)],
        )

        assert result.exit_code == 0, result.output
        assert f"Wrote 10 vertices in 4 partitions to {output_dir}" in result.stdout
        manifest = json.loads((output_dir / "_partitions.json").read_text())
        assert manifest["partitions"][0]["locality_hint"] == "s0"

    def test_bad_input(self, tmp_path: Path) -> None:
        input_file = tmp_path / "people.jsonl"
        input_file.write_text("not json\n")

        result = runner.invoke(app, ["--no-dotenv", "partition", str(input_file), str(tmp_path / "out")])

        assert result.exit_code == 1


class TestPluginsCommand:
    def test_lists_builtin_plugins(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "plugins", "list"])

        assert result.exit_code == 0
        assert "SOURCES:" in result.stdout
        assert "SINKS:" in result.stdout
        assert "STORES:" in result.stdout
        for name in ("jsonl", "memory", "noop", "sql"):
            assert name in result.stdout

    def test_filter_by_type(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "plugins", "list", "--type", "store"])

        assert result.exit_code == 0
        assert "STORES:" in result.stdout
        assert "SOURCES:" not in result.stdout

    def test_invalid_type(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "plugins", "list", "--type", "transform"])

        assert result.exit_code == 1


class TestConfigCommand:
    def test_prints_redacted_config(self, project: Path) -> None:
        settings = _settings(
            project,
            UPPER_JOB,
            "store:\n  plugin: sql\n  options:\n    url: postgresql://scott:tiger@db/graph\n",
        )

        result = runner.invoke(app, ["--no-dotenv", "config", "-s", str(settings)])

        assert result.exit_code == 0, result.output
        config = _json_block(result.stdout)
        assert config["store"]["options"]["url"] == "postgresql://scott:***@db/graph"
        assert config["jobs"][0]["name"] == "upper"
        assert "tiger" not in result.stdout

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT / "scripts" / "seed_repository_config.py"


def _run_script(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = {**os.environ, "PYTHONPATH": str(ROOT)}
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=check,
        capture_output=True,
        text=True,
        env=env,
    )


def test_seed_script_emits_upsert_from_yaml(tmp_path: Path) -> None:
    config = tmp_path / "weaver.yml"
    config.write_text(
        "templates:\n"
        "  - https://github.com/acme/ts-template\n"
        "mergeStrategies:\n"
        "  - patterns: ['*.md']\n"
        "    strategy: skip-existing\n"
    )

    output = _run_script("--repo", "acme/o'brien", "--config", str(config), "--installation-id", "7").stdout

    assert "insert into repository_configs" in output
    assert "values (7, null, 'acme/o''brien'," in output
    assert '"type": "skip"' in output
    assert "on conflict (repo_full_name) do update" in output
    assert output.rstrip().endswith("updated_at = now();")


def test_seed_script_rejects_invalid_config(tmp_path: Path) -> None:
    config = tmp_path / "weaver.json"
    config.write_text('{"mergeStrategy": "bogus"}')

    completed = _run_script("--repo", "acme/app", "--config", str(config), check=False)

    assert completed.returncode != 0
    assert "ConfigurationError" in completed.stderr


@pytest.mark.parametrize("repo", ["acme", ""])
def test_seed_script_requires_owner_and_name(tmp_path: Path, repo: str) -> None:
    config = tmp_path / "weaver.json"
    config.write_text("{}")

    completed = _run_script("--repo", repo, "--config", str(config), check=False)

    assert completed.returncode == 2

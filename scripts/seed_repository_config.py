#!/usr/bin/env python3
"""Emit SQL that registers a target repository and its template configuration."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import yaml

from repoweaver.schemas.weaver import load_weaver_config


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _sql_int(value: int | None) -> str:
    return "null" if value is None else str(int(value))


def read_config(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yml", ".yaml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    config = load_weaver_config(raw)
    return config.model_dump(mode="json", by_alias=True, exclude_none=True)


def render_sql(
    *,
    repo_full_name: str,
    config: dict[str, Any],
    installation_id: int | None,
    github_repo_id: int | None,
    auto_update: bool,
) -> str:
    config_json = _quote_sql(json.dumps(config, sort_keys=True))
    return f"""-- repoweaver repository config seed
-- Apply with psql against the database behind RW_DATABASE_URL.

insert into repository_configs (installation_id, github_repo_id, repo_full_name, config, auto_update)
values ({_sql_int(installation_id)}, {_sql_int(github_repo_id)}, {_quote_sql(repo_full_name)}, {config_json}::jsonb, {str(auto_update).lower()})
on conflict (repo_full_name) do update
set config = excluded.config, auto_update = excluded.auto_update, updated_at = now();
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to seed a repoweaver repository config.")
    parser.add_argument("--repo", required=True, help="Target repository as owner/name")
    parser.add_argument("--config", required=True, type=Path, help="Weaver config file (.json, .yml or .yaml)")
    parser.add_argument("--installation-id", type=int, default=None, help="GitHub App installation id")
    parser.add_argument("--github-repo-id", type=int, default=None, help="Numeric GitHub repository id")
    parser.add_argument("--no-auto-update", action="store_true", help="Disable push-triggered updates")
    args = parser.parse_args()

    if "/" not in args.repo:
        parser.error("--repo must look like owner/name")

    print(
        render_sql(
            repo_full_name=args.repo,
            config=read_config(args.config),
            installation_id=args.installation_id,
            github_repo_id=args.github_repo_id,
            auto_update=not args.no_auto_update,
        )
    )


if __name__ == "__main__":
    main()

"""
Cluster a JSON file of projects from the command line.

    python scripts/cluster_projects.py projects.json [--seed 7]

The file holds a list of objects shaped like the `projects` items of
POST /v1/cluster. Providers and limits come from the same environment
variables as the service (EMBEDDING_MODEL, NAMING_MODEL, GEMINI_API_KEY, ...).
Prints the outcome as JSON; exits 1 when clustering failed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from project_clusters.core.config import get_settings
from project_clusters.core.logging import configure_logging
from project_clusters.models.registry import load_providers
from project_clusters.schemas.project import ProjectRef


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Group projects by prompt similarity.")
    parser.add_argument("projects_file", type=Path, help="JSON list of projects")
    parser.add_argument("--seed", type=int, default=None, help="centroid initialisation seed")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=False)

    try:
        raw = json.loads(args.projects_file.read_text(encoding="utf-8"))
        projects = TypeAdapter(list[ProjectRef]).validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"[cluster_projects] Could not read {args.projects_file}: {exc}", file=sys.stderr)
        return 2

    registry = load_providers(settings)
    if registry.pipeline is None:
        print("[cluster_projects] Clustering pipeline is not available.", file=sys.stderr)
        return 2
    outcome = asyncio.run(registry.pipeline.cluster(projects, seed=args.seed))

    print(outcome.model_dump_json(indent=2), flush=True)
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import argparse
import io
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import get_engine_config, get_log_level_config, get_target_config, load_runner_config
from .constants import SCRIPT_FORMAT_CLOUD_CONFIG, TARGET_DIRECT, VALID_SCRIPT_FORMATS, VALID_TARGETS
from .errors import ConfigurationError, ConvergeError
from .graph import check_graph, plan_passes, render_plan
from .io_utils import _atomic_write_bytes
from .logging_utils import configure_logging, pretty, summarize_error, summarize_run
from .manifest import load_manifest
from .runner import converge
from .tasks import task_registry

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _load_config(args: argparse.Namespace) -> dict[str, Any]:
    config, err = load_runner_config(_resolve_project_dir(args.project_dir))
    if err:
        raise ConfigurationError(f"Invalid runner config: {err}")
    level = args.log_level or get_log_level_config(config) or "INFO"
    configure_logging(level)
    return config


def _run(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        target_cfg = get_target_config(config)
        tasks = load_manifest(
            Path(args.manifest).expanduser(),
            image_cache_dir=args.cache_dir or target_cfg["cache_dir"],
        )
    except ConfigurationError as exc:
        sys.stderr.write(str(exc) + "\n")
        return EXIT_CONFIG_ERROR

    engine_cfg = get_engine_config(config)
    mode = args.target or target_cfg["mode"] or TARGET_DIRECT
    attempts = args.max_attempts_with_no_progress or engine_cfg["max_attempts_with_no_progress"]
    backoff = args.backoff if args.backoff is not None else engine_cfg["no_progress_backoff_seconds"]
    workers = args.workers or engine_cfg["max_workers"]

    # Buffered so a failed run leaves an existing --out file untouched.
    out: Optional[io.StringIO] = io.StringIO() if args.out else None
    try:
        result = converge(
            tasks,
            target=mode,
            out=out,
            fs_root=args.fs_root or target_cfg["fs_root"] or "/",
            fmt=args.format,
            max_attempts_with_no_progress=attempts,
            max_workers=workers,
            no_progress_backoff=backoff,
        )
    except ValueError as exc:
        sys.stderr.write(str(exc) + "\n")
        return EXIT_CONFIG_ERROR
    except ConfigurationError as exc:
        logger.error("Invalid task graph:\n{}", pretty(summarize_error(exc)))
        sys.stderr.write(str(exc) + "\n")
        return EXIT_CONFIG_ERROR
    except ConvergeError as exc:
        logger.error("Error running tasks:\n{}", pretty(summarize_error(exc)))
        sys.stderr.write(str(exc) + "\n")
        return EXIT_RUN_FAILED

    if out is not None:
        out_path = Path(args.out).expanduser()
        _atomic_write_bytes(out_path, out.getvalue().encode("utf-8"))
        logger.info("Wrote {}", out_path)
    logger.info("Run summary:\n{}", pretty(summarize_run(result)))
    return EXIT_OK


def _plan(args: argparse.Namespace) -> int:
    try:
        _load_config(args)
        tasks = load_manifest(Path(args.manifest).expanduser())
        graph = check_graph(tasks)
    except ConfigurationError as exc:
        sys.stderr.write(str(exc) + "\n")
        return EXIT_CONFIG_ERROR

    plan = plan_passes(graph)
    if args.json:
        payload = {
            "passes": plan.passes,
            "total_tasks": plan.total_tasks,
            "max_parallelism": plan.max_parallelism,
            "dependencies": {name: sorted(deps) for name, deps in sorted(graph.items())},
        }
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    else:
        sys.stdout.write(render_plan(graph, plan, as_tree=args.tree))
    return EXIT_OK


def _kinds(args: argparse.Namespace) -> int:
    sys.stdout.write(json.dumps({"kinds": task_registry.list_kinds()}, indent=2) + "\n")
    return EXIT_OK


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return parsed


def _non_negative_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got {value!r}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Converge a node toward a declared task manifest")
    parser.add_argument("--project-dir", default=None, help="Directory holding .converge/config.yaml (default: cwd)")
    parser.add_argument("--log-level", default=None, help="Log level (default: config log_level or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Converge the tasks of a manifest")
    run.add_argument("--manifest", required=True, help="Task manifest (YAML or JSON)")
    run.add_argument("--target", default=None, choices=list(VALID_TARGETS), help="Execution target (default: direct)")
    run.add_argument("--fs-root", default=None, help="Filesystem root for direct/dryrun targets (default: /)")
    run.add_argument("--cache-dir", default=None, help="Image cache directory (overrides the manifest)")
    run.add_argument("--out", default=None, help="Write the dry-run report or rendered script here (default: stdout)")
    run.add_argument("--format", default=SCRIPT_FORMAT_CLOUD_CONFIG, choices=list(VALID_SCRIPT_FORMATS))
    run.add_argument("--max-attempts-with-no-progress", default=None, type=_positive_int)
    run.add_argument("--backoff", default=None, type=_non_negative_float, help="Seconds to wait after a pass with no progress")
    run.add_argument("--workers", default=None, type=_positive_int, help="Tasks run concurrently within a pass")
    run.set_defaults(func=_run)

    plan = subparsers.add_parser("plan", help="Show the passes a clean run would take")
    plan.add_argument("--manifest", required=True)
    plan.add_argument("--tree", action="store_true", help="Show dependents as a tree")
    plan.add_argument("--json", action="store_true", help="Emit the plan as JSON")
    plan.set_defaults(func=_plan)

    kinds = subparsers.add_parser("kinds", help="List registered task kinds")
    kinds.set_defaults(func=_kinds)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Sequence

import yaml  # type: ignore

from .errors import RegistryError, ValidationError
from .logging_config import setup_logging
from .models import ProtocolDefinition, ReviewState
from .services.registry_runtime import RegistryRuntime, build_registry_runtime


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="protocol-registry",
        description="List, pull and push versioned encoding protocols",
    )
    parser.add_argument("--registry-root", type=Path, default=None, help="Override REGISTRY.ROOT")
    parser.add_argument("--db", dest="db_path", type=Path, default=None, help="Override REGISTRY.SUBMISSIONS_DB")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_cmd = subparsers.add_parser("list", help="List final protocols")
    list_cmd.add_argument("domain", nargs="?", default=None, help="Domain prefix filter, e.g. environmental")

    pull = subparsers.add_parser("pull", help="Print a protocol definition")
    pull.add_argument("domain_path", help="Domain path, e.g. environmental/soil")
    pull.add_argument("name", help="Protocol name")
    pull.add_argument("--version", default=None, help="Archived version to pull (default: final)")

    push = subparsers.add_parser("push", help="Submit a protocol definition file for review")
    push.add_argument("file", type=Path, help="YAML definition file")
    push.add_argument("--domain-path", default=None, help="Override the file's domain_path")
    push.add_argument("--version", default=None, help="Override the file's version")
    push.add_argument("--note", default=None, help="Change note (default: the file's change_note)")
    push.add_argument("--author", default=None, help="Submitter label")

    history = subparsers.add_parser("history", help="Show final and archived versions")
    history.add_argument("domain_path")
    history.add_argument("name")

    submissions = subparsers.add_parser("submissions", help="List submissions")
    submissions.add_argument("--state", choices=[s.value for s in ReviewState], default=None)

    request = subparsers.add_parser("request", help="Render a submission's change request")
    request.add_argument("submission_id")

    for action in ("approve", "reject"):
        decide = subparsers.add_parser(action, help=f"{action.capitalize()} a submission")
        decide.add_argument("submission_id")
        decide.add_argument("--reviewer", default=None)
        decide.add_argument("--note", default=None)
        if action == "approve":
            decide.add_argument("--merge", action="store_true", help="Run a merge batch for it right away")

    merge = subparsers.add_parser("merge", help="Promote approved submissions")
    merge.add_argument("submission_ids", nargs="*", help="Limit the batch to these submissions")
    return parser


def _load_definition_file(path: Path) -> ProtocolDefinition:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError("UNREADABLE_DEFINITION", f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError("UNREADABLE_DEFINITION", f"{path} must contain a mapping")
    try:
        return ProtocolDefinition.model_validate(data)
    except ValueError as exc:
        raise ValidationError("UNREADABLE_DEFINITION", f"Invalid definition in {path}: {exc}") from exc


def _run(parsed: argparse.Namespace, runtime: RegistryRuntime) -> Any:
    if parsed.command == "list":
        return [str(path) for path in runtime.client.list(parsed.domain)]

    if parsed.command == "pull":
        return runtime.client.pull(parsed.name, parsed.domain_path, parsed.version).model_dump(mode="json")

    if parsed.command == "push":
        definition = _load_definition_file(parsed.file)
        submission_id = runtime.client.push(
            definition,
            parsed.domain_path or definition.domain_path,
            parsed.version or definition.version,
            parsed.note if parsed.note is not None else definition.change_note,
            author=parsed.author,
        )
        return {"submission_id": submission_id, "state": ReviewState.OPENED.value}

    if parsed.command == "history":
        return runtime.client.history(parsed.name, parsed.domain_path).model_dump(mode="json")

    if parsed.command == "submissions":
        state = ReviewState(parsed.state) if parsed.state else None
        return [record.model_dump(mode="json") for record in runtime.reviews.list_reviews(state)]

    if parsed.command == "request":
        return runtime.reviews.render_request(parsed.submission_id)

    if parsed.command == "approve":
        record = runtime.reviews.approve(parsed.submission_id, reviewer=parsed.reviewer, note=parsed.note)
        payload: dict[str, Any] = {"review": record.model_dump(mode="json")}
        if parsed.merge:
            report = runtime.merge_processor.process_batch([parsed.submission_id])
            payload["merge"] = report.model_dump(mode="json")
        return payload

    if parsed.command == "reject":
        return runtime.reviews.reject(
            parsed.submission_id, reviewer=parsed.reviewer, note=parsed.note
        ).model_dump(mode="json")

    if parsed.command == "merge":
        ids = list(parsed.submission_ids) or None
        return runtime.merge_processor.process_batch(ids).model_dump(mode="json")

    raise RegistryError("INVALID_COMMAND", f"Unsupported command: {parsed.command}")


def main(argv: Sequence[str] | None = None) -> int:
    argv_list = list(sys.argv[1:] if argv is None else argv)
    parsed = _build_parser().parse_args(argv_list)
    setup_logging(log_to_file=False, level_name=parsed.log_level)
    try:
        runtime = build_registry_runtime(parsed.registry_root, parsed.db_path)
        result = _run(parsed, runtime)
    except RegistryError as exc:
        print(json.dumps(exc.to_payload(), ensure_ascii=False, indent=2), file=sys.stderr)
        return 2
    if isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result, ensure_ascii=False, indent=2))
    merge_results = result.get("merge", result).get("results") if isinstance(result, dict) else None
    if merge_results and any(item["status"] == "failed" for item in merge_results):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

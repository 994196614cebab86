"""warden command-line entry point.

  warden audit [REPO] [--base BRANCH] [--thread ID]
      Run the security audit pipeline over REPO's changes and print the report.

  warden check TRANSCRIPT.json [--window N]
      Load a serialized transcript and print the escalation decision and
      error-pattern analysis. No model is called.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from langchain_core.messages import messages_from_dict

from warden.core.config import get_settings
from warden.core.logging import get_logger, setup_logging


def _cmd_audit(args: argparse.Namespace) -> int:
    from warden.core.orchestrator import run_audit
    from warden.core.report import format_report_message

    logger = get_logger("main")
    repo = args.repo or get_settings().target_repo_path or str(Path.cwd())
    logger.info("Auditing %s", repo)

    final = run_audit(repo_root=repo, thread_id=args.thread, base_branch=args.base or "")
    report = final.security_report
    if report is None:
        logger.error("Audit finished without a report")
        return 1

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(format_report_message(report))
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    from warden.core.error_patterns import analyze_error_patterns, detect_stuck_pattern
    from warden.core.escalation import decide_escalation
    from warden.core.transcript import group_tool_messages

    payload = json.loads(Path(args.transcript).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("messages", [])
    messages = messages_from_dict(payload)

    groups = group_tool_messages(messages)
    print(f"Messages: {len(messages)} | Tool groups: {len(groups)}")
    print(f"Stuck: {detect_stuck_pattern(messages, args.window)}")
    print(f"Decision: {decide_escalation(messages).value}")
    print()
    print(analyze_error_patterns(messages))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="warden", description="Agent failure escalation and change auditing")
    sub = parser.add_subparsers(dest="command", required=True)

    audit = sub.add_parser("audit", help="Audit the changes in a repository")
    audit.add_argument("repo", nargs="?", default="", help="Repository path (default: TARGET_REPO_PATH or CWD)")
    audit.add_argument("--base", default="", help="Base branch to diff against")
    audit.add_argument("--thread", default=None, help="Thread id for this run")
    audit.add_argument("--json", action="store_true", help="Print the report as JSON")
    audit.set_defaults(func=_cmd_audit)

    check = sub.add_parser("check", help="Evaluate a saved transcript")
    check.add_argument("transcript", help="JSON file with a list of serialized messages")
    check.add_argument("--window", type=int, default=10, help="Stuck-pattern window size")
    check.set_defaults(func=_cmd_check)
    return parser


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

"""CLI - Command line interface for the Brenner artifact compiler."""

import argparse
import asyncio
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from brenner_agent.config import BrennerConfig, config_from_dict, load_raw_config
from brenner_agent.observability import CompileObserver
from brenner_agent.tools import ToolResult

from .config_validator import Severity, has_errors, validate_config
from .tool_factory import create_tools

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brenner-agent",
        description="Brenner Agent - compile multi-agent research threads into canonical artifacts",
    )
    parser.add_argument(
        "--workspace",
        "-w",
        default=".",
        help="Workspace directory for message and artifact files (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        default="config/config.local.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Verbose output (log compile events and print a run summary)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_cmd = subparsers.add_parser("parse", help="Parse delta blocks in a markdown message")
    parse_cmd.add_argument("file", help="Markdown file holding a message body")
    parse_cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    compile_cmd = subparsers.add_parser("compile", help="Compile a thread into an artifact")
    compile_cmd.add_argument("--thread-id", required=True, help="Thread identifier")
    compile_cmd.add_argument("--messages", help="Thread export JSON (skips Agent Mail fetch)")
    compile_cmd.add_argument("--project-key", help="Agent Mail project key (default: from config)")
    compile_cmd.add_argument("--base", help="Artifact JSON to merge onto")
    compile_cmd.add_argument("--output", help="Markdown output path")
    compile_cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    compile_cmd.add_argument("--publish", action="store_true", help="Post the artifact back to the thread")
    compile_cmd.add_argument("--sender", help="Publishing agent name (default: agent_name from config)")
    compile_cmd.add_argument("--to", help="Comma-separated recipients for --publish")
    compile_cmd.add_argument("--subject", help="Subject override for --publish")

    lint_cmd = subparsers.add_parser("lint", help="Lint a compiled artifact JSON file")
    lint_cmd.add_argument("file", help="Artifact JSON file")
    lint_cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    return parser


def _print_result(result: ToolResult, title: str, as_json: bool, markdown: bool = False) -> None:
    if as_json:
        payload: Dict[str, Any] = {"success": result.success, "error": result.error}
        payload.update({k: v for k, v in result.data.items() if k != "markdown"})
        console.print_json(data=payload)
        return

    if not result.success:
        console.print(Panel(result.error or "Unknown error", title=f"❌ {title}", border_style="red"))
        if result.output:
            console.print(result.output)
        return

    body = Markdown(result.output) if markdown else result.output
    console.print(Panel(body, title=title, border_style="green"))


def _print_compile_stats(data: Dict[str, Any]) -> None:
    stats = data.get("stats") or {}
    merge = data.get("merge") or {}
    lint = (data.get("lint") or {}).get("summary") or {}

    table = Table(title=f"{data.get('thread_id')} v{data.get('version')}")
    table.add_column("Stage", style="cyan")
    table.add_column("Result", justify="right")
    table.add_row("Messages", str(stats.get("message_count", 0)))
    table.add_row("Delta blocks", f"{stats.get('valid_blocks', 0)} valid / {stats.get('invalid_blocks', 0)} invalid")
    table.add_row("Merge", f"{merge.get('applied_count', 0)} applied / {merge.get('skipped_count', 0)} skipped")
    table.add_row("Lint", f"{lint.get('errors', 0)} errors / {lint.get('warnings', 0)} warnings")
    table.add_row("Publishable", "✅" if data.get("publishable") else "❌")
    console.print(table)


async def run_command(args: argparse.Namespace, config: BrennerConfig, observer: CompileObserver) -> int:
    """Run one parsed command and return its exit code."""
    tools = create_tools(args.workspace, config=config, observer=observer)

    if args.command == "parse":
        result = await tools["delta_parse"].execute(path=args.file)
        _print_result(result, "Delta Parse", args.json)
        return EXIT_OK if result.success else EXIT_FAILED

    if args.command == "lint":
        result = await tools["artifact_lint"].execute(path=args.file)
        _print_result(result, "Artifact Lint", args.json)
        if not result.success:
            return EXIT_FAILED
        return EXIT_OK if result.data.get("valid") else EXIT_FAILED

    project_key = args.project_key or config.project_key or None
    result = await tools["artifact_compile"].execute(
        thread_id=args.thread_id,
        messages_path=args.messages,
        project_key=None if args.messages else project_key,
        base_path=args.base,
        output_path=args.output,
    )
    _print_result(result, "Artifact Compile", args.json, markdown=True)
    if not result.success:
        return EXIT_FAILED
    if not args.json:
        _print_compile_stats(result.data)

    publishable = bool(result.data.get("publishable"))
    if not args.publish:
        return EXIT_OK if publishable else EXIT_FAILED

    if not publishable:
        console.print("❌ Lint errors block publishing; fix the thread and compile again.", style="red")
        return EXIT_FAILED

    publish = await tools["artifact_publish"].execute(
        path=result.data["markdown_path"],
        thread_id=args.thread_id,
        version=result.data["version"],
        project_key=project_key or "",
        sender=args.sender or config.agent_name,
        to=args.to or "",
        subject=args.subject,
    )
    _print_result(publish, "Artifact Publish", args.json)
    return EXIT_OK if publish.success else EXIT_FAILED


def _needs_mail(args: argparse.Namespace) -> bool:
    if args.command != "compile":
        return False
    if args.project_key:
        return False
    return args.publish or not args.messages


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    from dotenv import load_dotenv

    # Load environment variables from .env file
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        raw_config = load_raw_config(args.config)
    except FileNotFoundError:
        if args.verbose:
            console.print(f"⚠️ Config file not found: {args.config}", style="yellow")
            console.print("Using default configuration.", style="dim")
        raw_config = {}
    except ValueError as e:
        console.print(f"  ❌ [config] {e}", style="red")
        return EXIT_CONFIG

    # Validate configuration at startup
    issues = validate_config(raw_config, workspace_dir=args.workspace, require_mail=_needs_mail(args))
    if issues:
        for issue in issues:
            icon = "❌" if issue.severity == Severity.ERROR else "⚠️"
            style = "red" if issue.severity == Severity.ERROR else "yellow"
            console.print(f"  {icon} [{issue.field}] {issue.message}", style=style)

        if has_errors(issues):
            console.print(
                "\n💡 Fix the errors above, then try again.\n"
                "   Quick fix: export AGENT_MAIL_PROJECT_KEY=/abs/path/to/project\n"
                "   Or copy config/config.yaml → config/config.local.yaml and set project_key",
                style="dim",
            )
            return EXIT_CONFIG

    config = config_from_dict(raw_config)
    observer = CompileObserver(thread_id=getattr(args, "thread_id", None), verbose=args.verbose)

    try:
        code = asyncio.run(run_command(args, config, observer))
    except KeyboardInterrupt:
        console.print("\n👋 Interrupted", style="yellow")
        return EXIT_FAILED

    if args.verbose and args.command == "compile":
        observer.print_summary()
    return code


if __name__ == "__main__":
    raise SystemExit(main())

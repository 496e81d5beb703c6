from __future__ import annotations

import argparse
import sys
from functools import partial
from typing import Never, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter

from polyscript import DEFAULT_TABLE, DaemonManager, ParallelExecutor, serve
from polyscript.config import DaemonConfig, export_ipc_hint, load_config
from polyscript.errors import BatchFailure, JobFailure, PolyscriptError
from polyscript.logging import setup_logging
from polyscript.parallel import JobOutcome

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)

_FFI_LANGUAGE = "cpp"
_GLOBAL_VALUE_FLAGS = frozenset({"--config", "--socket", "--pid-file", "--log-file", "--log-level"})


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich on stderr.

    Example:
        ```python
        parser = _RichArgumentParser(prog="polyscript")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit with status 2.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _ERR_CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_usage(_ERR_CONSOLE.file)
        raise SystemExit(2)


def _add_script_arguments(parser: argparse.ArgumentParser, language: str) -> None:
    """Add the positional arguments every language subcommand takes.

    Example:
        ```python
        _add_script_arguments(parser, "py")
        ```
    """
    if language == _FFI_LANGUAGE:
        parser.add_argument("script", metavar="lib", help="Path to the shared library.")
        parser.add_argument("func", help="Exported function: int func(int argc, const char **argv).")
    else:
        parser.add_argument("script", help="Path to the script.")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the script.")


def _split_script_arguments(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """Split a language command's script arguments off so they pass through verbatim.

    argparse may consume a `--` inside REMAINDER arguments, so everything after
    the script (and, for `cpp`, the function name) bypasses the parser. Returns
    `None` for the tail when the command is not a language tag.

    Example:
        ```python
        head, rest = _split_script_arguments(["py", "a.py", "--", "x"])
        assert rest == ["--", "x"]
        ```
    """
    index = 0
    while index < len(argv):
        token = argv[index]
        if token in _GLOBAL_VALUE_FLAGS:
            index += 2
        elif token.startswith("-"):
            index += 1
        else:
            break
    if index >= len(argv) or argv[index] not in DEFAULT_TABLE.entries:
        return list(argv), None
    cut = index + (3 if argv[index] == _FFI_LANGUAGE else 2)
    return list(argv[:cut]), list(argv[cut:])


def build_parser() -> argparse.ArgumentParser:
    """Build the polyscript command-line parser.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="polyscript",
        allow_abbrev=False,
        description=(
            "polyscript CLI\n"
            "Run scripts in many languages through one dispatcher,\n"
            "directly, through a resident daemon, or as a parallel batch."
        ),
        epilog=(
            "Quick Examples:\n"
            "  polyscript py hello.py world\n"
            "  polyscript go main.go 42\n"
            "  polyscript cpp ./libexample.so run a b\n"
            "  polyscript parallel \"py a.py 1\" \"go b.go 2\"\n\n"
            "Daemon Examples:\n"
            "  polyscript daemon start\n"
            "  polyscript daemon run py hello.py world\n"
            "  polyscript daemon stop"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML config file with a [daemon] table.\n"
            "Defaults to $POLYSCRIPT_CONFIG when set."
        ),
    )
    parser.add_argument("--socket", help="Daemon socket path (overrides the config file).")
    parser.add_argument("--pid-file", help="Daemon pid file path (overrides the config file).")
    parser.add_argument("--log-file", help="Daemon log file path (overrides the config file).")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info for `daemon serve`, warning otherwise).",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines.")

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    for language in DEFAULT_TABLE.languages():
        strategy = DEFAULT_TABLE.entries[language].describe()
        lang_cmd = sub.add_parser(
            language,
            help=escape(strategy),
            description=f"Run a script with the '{language}' bridge.\n{escape(strategy)}",
            formatter_class=_HELP_FORMATTER,
        )
        _add_script_arguments(lang_cmd, language)

    sub.add_parser(
        "languages",
        help="List supported language tags.",
        description="Show every language tag and the strategy it dispatches to.",
        formatter_class=_HELP_FORMATTER,
    )

    parallel_cmd = sub.add_parser(
        "parallel",
        help="Run several scripts concurrently.",
        description=(
            "Run a batch of '<lang> <script> \\[args...]' specs concurrently.\n"
            "Fails if any job fails, after every job has finished."
        ),
        epilog=(
            "Example:\n"
            "  polyscript parallel \"py a.py 1\" \"go b.go 2\""
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parallel_cmd.add_argument("specs", nargs="+", help="Job specs, one quoted string each.")
    parallel_cmd.add_argument(
        "--no-summary",
        action="store_true",
        help="Do not print the per-job summary table.",
    )

    daemon_cmd = sub.add_parser(
        "daemon",
        help="Manage the resident daemon.",
        description=(
            "The daemon accepts execution requests over a local Unix socket\n"
            "and runs each one in a fresh process."
        ),
        epilog=(
            "Examples:\n"
            "  polyscript daemon start\n"
            "  polyscript daemon status\n"
            "  polyscript daemon run py hello.py world\n"
            "  polyscript daemon stop"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    daemon_sub = daemon_cmd.add_subparsers(
        dest="action",
        required=True,
        parser_class=_RichArgumentParser,
    )
    start_cmd = daemon_sub.add_parser(
        "start",
        help="Start the daemon in the background.",
        description="Spawn a detached daemon process and record its pid.",
        formatter_class=_HELP_FORMATTER,
    )
    start_cmd.add_argument(
        "--wait-seconds",
        type=float,
        default=5.0,
        help="How long to wait for the socket to accept connections (default: 5).",
    )
    daemon_sub.add_parser(
        "serve",
        help="Run the daemon server loop in the foreground (internal).",
        description="Bind the socket and serve requests until stopped.",
        formatter_class=_HELP_FORMATTER,
    )
    daemon_sub.add_parser(
        "stop",
        help="Stop the running daemon.",
        description="Send the stop request and wait for the acknowledgment.",
        formatter_class=_HELP_FORMATTER,
    )
    daemon_sub.add_parser(
        "status",
        help="Report whether the daemon accepts connections.",
        description="Exit 0 when the daemon answers on its socket, 1 otherwise.",
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd = daemon_sub.add_parser(
        "run",
        help="Run one script through the daemon.",
        description="Send one request to the daemon and mirror its output and exit code.",
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("language", help="Language tag, e.g. py, go, js.")
    run_cmd.add_argument("script", help="Path to the script.")
    run_cmd.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the script.")

    return parser


def build_config(args: argparse.Namespace) -> DaemonConfig:
    """Resolve the daemon config from global CLI flags.

    Example:
        ```python
        config = build_config(args)
        ```
    """
    return load_config(args.config).with_overrides(
        socket_path=args.socket,
        pid_path=args.pid_file,
        log_path=args.log_file,
    )


def _print_languages() -> None:
    """Render the dispatch table in a rich table.

    Example:
        ```python
        _print_languages()
        ```
    """
    table = Table(title="Languages")
    table.add_column("Tag", style="cyan")
    table.add_column("Strategy")
    for language in DEFAULT_TABLE.languages():
        table.add_row(language, escape(DEFAULT_TABLE.entries[language].describe()))
    _CONSOLE.print(table)


def _print_batch(outcomes: Sequence[JobOutcome]) -> None:
    """Render parallel job outcomes in a rich table on stderr.

    Example:
        ```python
        _print_batch(report.outcomes)
        ```
    """
    table = Table(title="Parallel Jobs")
    table.add_column("Spec", style="cyan")
    table.add_column("Exit")
    table.add_column("Status")
    for outcome in outcomes:
        if outcome.ok:
            status = "[green]ok[/green]"
        elif outcome.error is not None:
            status = f"[red]{escape(str(outcome.error))}[/red]"
        else:
            status = "[red]failed[/red]"
        table.add_row(escape(outcome.spec), str(outcome.exit_code), status)
    _ERR_CONSOLE.print(table)


def _run_command(args: argparse.Namespace, config: DaemonConfig) -> int:
    """Execute the parsed command and return the process exit code.

    Example:
        ```python
        code = _run_command(args, config)
        ```
    """
    if args.command == "languages":
        _print_languages()
        return 0
    if args.command == "parallel":
        report = ParallelExecutor().run(args.specs)
        if not args.no_summary:
            _print_batch(report.outcomes)
        if not report.ok:
            raise BatchFailure(report.outcomes)
        return 0
    if args.command == "daemon":
        manager = DaemonManager(config)
        if args.action == "start":
            pid = manager.start(wait_seconds=args.wait_seconds)
            _CONSOLE.print(Panel.fit(f"polyscript daemon started (PID {pid})", style="bold green"))
            return 0
        if args.action == "serve":
            serve(config)
            return 0
        if args.action == "stop":
            pid = manager.stop()
            suffix = f" (PID {pid})" if pid is not None else ""
            _CONSOLE.print(Panel.fit(f"daemon stopped{suffix}", style="bold yellow"))
            return 0
        if args.action == "status":
            if manager.is_running():
                _CONSOLE.print(Panel.fit(f"daemon running at {config.socket_path}", style="bold green"))
                return 0
            _CONSOLE.print(Panel.fit(f"daemon not running at {config.socket_path}", style="bold yellow"))
            return 1
        if args.action == "run":
            manager.run(args.language, args.script, list(args.args))
            return 0
    if args.command in DEFAULT_TABLE.entries:
        arguments = list(args.args)
        if args.command == _FFI_LANGUAGE:
            arguments.insert(0, args.func)
        result = DEFAULT_TABLE.dispatch(args.command, args.script, arguments, capture=False)
        return result.exit_code

    raise PolyscriptError(f"Unhandled command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `polyscript` CLI command handler.

    Example:
        ```python
        code = main(["py", "hello.py", "world"])
        ```
    """
    parser = build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    head, script_arguments = _split_script_arguments(raw_argv)
    args = parser.parse_args(head)
    if script_arguments is not None:
        args.args = script_arguments
    serving = args.command == "daemon" and getattr(args, "action", None) == "serve"
    setup_logging(level=args.log_level or ("info" if serving else "warning"), json_output=args.log_json)

    try:
        config = build_config(args)
    except (OSError, ValueError) as exc:
        _ERR_CONSOLE.print(Panel.fit(f"[bold red]Config error:[/bold red] {escape(str(exc))}", border_style="red"))
        return 2
    export_ipc_hint(config)

    try:
        return _run_command(args, config)
    except JobFailure as exc:
        return exc.exit_code
    except PolyscriptError as exc:
        _ERR_CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
        return exc.exit_code


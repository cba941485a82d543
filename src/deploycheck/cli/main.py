#!/usr/bin/env python3
"""
DEPLOYCHECK CLI
---------------
Primary interface: translates user commands into CheckEngine runs and
renders the resulting report either for humans (rich) or for automation
(JSON on stdout). The exit status reflects the overall severity so the
command can gate a deployment pipeline.

Author: DeployCheck Team
Date: 2026-10-18
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from deploycheck.cli.formatter import ReportFormatter, console
from deploycheck.core.config import CheckerConfig
from deploycheck.core.engine import CheckEngine
from deploycheck.core.models import ConfigError, DeployCheckError
from deploycheck.rules.consistency import DEFAULT_RULES

VERSION = "1.0.0"
EXIT_USAGE = 2


class DeployCheckCLI:
    """
    CLI wrapper that translates user commands into Engine actions.
    Read-only by construction: there is no command that edits the project.
    """

    def __init__(self):
        """Initializes the CLI and sets up the argument parser."""
        self.parser = argparse.ArgumentParser(
            prog="deploycheck",
            description="DeployCheck - Deployment readiness checks for container + reverse-proxy projects",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._setup_args()

    def _setup_args(self):
        """Configures the command-line flags and subcommands."""
        self.parser.add_argument("-V", "--version", action="version", version=f"deploycheck v{VERSION}")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        # 'check' subcommand - the read-only readiness audit
        check_parser = subparsers.add_parser("check", help="🔍 Check a project for deployment readiness")
        check_parser.add_argument("path", nargs="?", default=".", help="Project root (default: current directory)")
        check_parser.add_argument("--compose", help="Composition file (default: auto-detect)")
        check_parser.add_argument("--proxy", help="Reverse-proxy config, Caddyfile or nginx (default: auto-detect)")
        check_parser.add_argument("--env-example", help="Documented environment file (default: .env.example)")
        check_parser.add_argument("--config", help="Checker config file (default: <path>/.deploycheck.yaml)")
        check_parser.add_argument("--format", choices=("text", "json"), default="text", help="Output format")
        check_parser.add_argument("--strict", action="store_true", help="Exit non-zero on warnings too")
        check_parser.add_argument("--no-info", action="store_true", help="Hide PASS (informational) findings")
        check_parser.add_argument("--no-fixes", action="store_true", help="Hide suggested fixes")
        check_parser.add_argument("--disable", action="append", default=[], metavar="RULE",
                                  help="Skip a rule (repeatable)")
        check_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

        # 'rules' subcommand - registry listing
        subparsers.add_parser("rules", help="📋 List the consistency rules")

    def print_header(self, subtitle: str):
        """Renders the DeployCheck splash header with themed styling."""
        console.print(Panel.fit(
            f"[bold cyan]DeployCheck v{VERSION}[/bold cyan]\n"
            "══════════════════════════════════════════════════",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan"
        ))

    def _configure_logging(self, verbose: bool):
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )

    def _optional_path(self, value: Optional[str]) -> Optional[Path]:
        return Path(value).resolve() if value else None

    def _run_check(self, args: argparse.Namespace) -> int:
        project = Path(args.path).resolve()
        if not project.is_dir():
            console.print(f"[bold red]Error:[/bold red] Project directory '{args.path}' not found.")
            return EXIT_USAGE

        unknown = [name for name in args.disable if name not in {r[0] for r in DEFAULT_RULES}]
        if unknown:
            console.print(f"[bold red]Error:[/bold red] Unknown rule(s): {', '.join(unknown)}")
            return EXIT_USAGE

        try:
            config = CheckerConfig.discover(project, self._optional_path(args.config))
            engine = CheckEngine(str(project), config=config, disabled_rules=args.disable)
            report = engine.check(
                compose=self._optional_path(args.compose),
                proxy=self._optional_path(args.proxy),
                env_example=self._optional_path(args.env_example),
            )
        except ConfigError as e:
            console.print(f"[bold red]Configuration error:[/bold red] {e}")
            return EXIT_USAGE
        except DeployCheckError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            return EXIT_USAGE

        if args.format == "json":
            sys.stdout.write(report.to_json() + "\n")
        else:
            self.print_header("Deployment Readiness Check")
            ReportFormatter(show_info=not args.no_info, show_fixes=not args.no_fixes).render(report)

        return report.exit_code(strict=args.strict)

    def _list_rules(self) -> int:
        table = Table(title="DeployCheck Rules", header_style="bold magenta")
        table.add_column("Rule", style="cyan", no_wrap=True)
        table.add_column("Checks", style="white")
        for name, _, description in DEFAULT_RULES:
            table.add_row(name, description)
        console.print(table)
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Primary routing entry point. Returns the process exit status."""
        argv = sys.argv[1:] if argv is None else argv
        if not argv:
            self.print_header("Deployment Readiness")
            self.parser.print_help()
            return 0

        args = self.parser.parse_args(argv)
        if args.command == "check":
            self._configure_logging(args.verbose)
            return self._run_check(args)
        if args.command == "rules":
            return self._list_rules()
        self.parser.print_help()
        return 0


def main():
    """Application entry point with interrupt handling."""
    try:
        sys.exit(DeployCheckCLI().run())
    except KeyboardInterrupt:
        console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(130)


if __name__ == "__main__":
    main()

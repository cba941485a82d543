# src/deploycheck/cli/formatter.py
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from deploycheck.core.models import Severity
from deploycheck.report.builder import Report, STATUS_FAIL, STATUS_WARN

# Initialize the Rich console for high-quality terminal output
console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: ("bold red", "❌"),
    Severity.WARNING: ("bold yellow", "⚠️"),
    Severity.PASS: ("green", "✅"),
}


class ReportFormatter:
    """
    ReportFormatter: the visual heart of the CLI.
    Renders a Report as severity-grouped tables plus a summary panel.
    """

    def __init__(self, show_info: bool = True, show_fixes: bool = True):
        self.show_info = show_info
        self.show_fixes = show_fixes

    def render(self, report: Report):
        for severity, findings in report.grouped():
            if severity is Severity.PASS and not self.show_info:
                continue
            self._render_group(severity, findings)
        self._render_summary(report)

    def _render_group(self, severity: Severity, findings: list):
        style, icon = SEVERITY_STYLES[severity]
        table = Table(title=f"{icon} {severity.value} ({len(findings)})", title_style=style,
                      show_lines=True, header_style="bold magenta", expand=True)
        table.add_column("Category", style="cyan", no_wrap=True)
        table.add_column("Location", style="dim")
        table.add_column("Finding", style="white", ratio=3)

        for finding in findings:
            text = escape(finding.message)
            if self.show_fixes and finding.suggested_fix:
                # Fixes are proposals only; nothing is ever applied
                text += f"\n[dim]Suggested fix:[/dim] [green]{escape(finding.suggested_fix)}[/green]"
            table.add_row(finding.category.value, escape(finding.location) or "-", text)

        console.print(table)

    def _render_summary(self, report: Report):
        counts = report.counts
        status = report.status
        color = "red" if status == STATUS_FAIL else "yellow" if status == STATUS_WARN else "green"
        console.print(Panel(
            f"[bold white]Deployment Readiness[/bold white]\n"
            f"════════════════════════════════════════\n"
            f"Project:   {report.project}\n"
            f"Critical:  [red]{counts['CRITICAL']}[/red]\n"
            f"Warnings:  [yellow]{counts['WARNING']}[/yellow]\n"
            f"Info:      [green]{counts['PASS']}[/green]\n"
            f"Status:    [bold {color}]{status.upper()}[/bold {color}]",
            border_style=color,
        ))

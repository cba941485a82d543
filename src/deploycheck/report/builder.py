#!/usr/bin/env python3
"""
DEPLOYCHECK REPORT BUILDER - The Judge
--------------------------------------
Aggregates rule findings into a Report: removes exact duplicates,
orders by severity, and assigns the overall pass / warn / fail status.

Author: DeployCheck Team
Date: 2026-10-18
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from deploycheck.core.models import Finding, Severity

STATUS_PASS = "pass"
STATUS_WARN = "warn"
STATUS_FAIL = "fail"


class Report:
    """
    The terminal artifact of one checker run.
    Findings are already ordered: CRITICAL, WARNING, then PASS.
    """

    def __init__(self, findings: Iterable[Finding], project: str = "",
                 artifacts: Optional[Dict[str, Optional[str]]] = None):
        self.findings: Tuple[Finding, ...] = tuple(findings)
        self.project = project
        self.artifacts = dict(artifacts or {})

    @property
    def counts(self) -> Dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    @property
    def status(self) -> str:
        counts = self.counts
        if counts[Severity.CRITICAL.value]:
            return STATUS_FAIL
        if counts[Severity.WARNING.value]:
            return STATUS_WARN
        return STATUS_PASS

    @property
    def passed(self) -> bool:
        return self.status != STATUS_FAIL

    def exit_code(self, strict: bool = False) -> int:
        """0 for pass/warn, 1 for fail. Strict mode also fails on warnings."""
        if self.status == STATUS_FAIL or (strict and self.status == STATUS_WARN):
            return 1
        return 0

    def by_severity(self, severity: Severity) -> List[Finding]:
        return [f for f in self.findings if f.severity is severity]

    def grouped(self) -> List[Tuple[Severity, List[Finding]]]:
        return [(s, self.by_severity(s)) for s in Severity if self.by_severity(s)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "status": self.status,
            "counts": self.counts,
            "artifacts": self.artifacts,
            "findings": [f.to_dict() for f in self.findings],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __eq__(self, other):
        if not isinstance(other, Report):
            return NotImplemented
        return self.findings == other.findings and self.project == other.project

    def __repr__(self):
        return f"Report(status={self.status!r}, counts={self.counts!r})"


class ReportBuilder:
    """Builds Reports. Stateless; safe to reuse across runs."""

    def build(self, findings: Iterable[Finding], project: str = "",
              artifacts: Optional[Dict[str, Optional[str]]] = None) -> Report:
        unique = []
        seen = set()
        for finding in findings:
            # Only identical (rule, category, message) triples collapse
            key = (finding.rule, finding.category, finding.message)
            if key in seen:
                continue
            seen.add(key)
            unique.append(finding)

        # sorted() is stable, so insertion order survives within a severity
        ordered = sorted(unique, key=lambda f: f.severity.rank)
        return Report(ordered, project=project, artifacts=artifacts)

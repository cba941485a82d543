#!/usr/bin/env python3
"""
DEPLOYCHECK ENGINE - The High Orchestrator
------------------------------------------
The CheckEngine runs one deployment-readiness check over a project:
artifact parsing and fact extraction (AnalysisPipeline), rule evaluation
(RuleEngine), then report assembly (ReportBuilder).

The engine is advisory only. It reads the project, it never writes to it,
and it keeps no state between runs.

Author: DeployCheck Team
Date: 2026-10-18
"""

import logging
import time
from pathlib import Path
from typing import Optional, Sequence

from deploycheck.core.config import CheckerConfig
from deploycheck.core.models import DeployCheckError
from deploycheck.parsing.context import FactBundle
from deploycheck.parsing.pipeline import AnalysisPipeline
from deploycheck.report.builder import Report, ReportBuilder
from deploycheck.rules.consistency import RuleEngine

logger = logging.getLogger("deploycheck.engine")


class CheckEngine:
    """
    Principal orchestrator for deployment-readiness checks.
    Coordinates the specialized units; each check() call is independent.
    """

    def __init__(self, workspace_path: str, config: Optional[CheckerConfig] = None,
                 disabled_rules: Sequence[str] = ()):
        self.workspace = Path(workspace_path).resolve()
        if not self.workspace.is_dir():
            raise DeployCheckError(f"Project directory not found: {self.workspace}")

        self.config = config or CheckerConfig.discover(self.workspace)
        self.pipeline = AnalysisPipeline(self.config)
        self.rules = RuleEngine(disabled=disabled_rules)
        self.builder = ReportBuilder()

    def collect_facts(self, compose: Optional[Path] = None, proxy: Optional[Path] = None,
                      env_example: Optional[Path] = None) -> FactBundle:
        """Phase 1-2 only: parsed and extracted facts, without rule evaluation."""
        return self.pipeline.run(self.workspace, compose, proxy, env_example)

    def check(self, compose: Optional[Path] = None, proxy: Optional[Path] = None,
              env_example: Optional[Path] = None) -> Report:
        """Performs a full check and returns the ordered Report."""
        started = time.perf_counter()

        # Phase 1-2: Parsing & Extraction
        bundle = self.collect_facts(compose, proxy, env_example)

        # Phase 3: Rule evaluation over the read-only bundle
        findings = self.rules.evaluate(bundle)

        # Phase 4: Report assembly
        report = self.builder.build(findings, project=str(self.workspace), artifacts={
            "compose": bundle.compose_file,
            "proxy": bundle.proxy_file,
            "proxy_dialect": bundle.proxy_dialect,
            "env_example": bundle.documented_env_file,
        })

        logger.info(f"Checked {len(bundle.services)} services in "
                    f"{time.perf_counter() - started:.3f}s: status={report.status}")
        return report

#!/usr/bin/env python3
"""
DEPLOYCHECK FACT BUNDLE
-----------------------
The normalized, derived record of everything the parsers and extractors
learned about a project. Rules only ever read it.

Every container is a tuple, frozenset or read-only mapping, so a bundle
can be handed to any number of rules without copying.

Author: DeployCheck Team
Date: 2026-10-18
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, FrozenSet

from deploycheck.core.models import (
    BuildRecipe, DependencyManifest, EnvUsage, RouteBlock, ServiceSpec
)


@dataclass(frozen=True)
class CopySource:
    path: str
    instruction: str                  # COPY or ADD
    line_no: int
    stage: str
    resolves: Optional[bool] = None   # None until checked against a real context
    escapes_context: bool = False


@dataclass(frozen=True)
class StageFact:
    stage: str
    stage_index: int
    has_production_only_install: bool
    has_build_step_after: bool
    install_line: Optional[int] = None
    build_line: Optional[int] = None
    install_command: str = ""
    build_command: str = ""


@dataclass(frozen=True)
class PortFact:
    """A declared listening port. value is None when unknown."""
    value: Optional[int] = None
    origin: str = "unknown"
    raw: str = ""
    file: Optional[str] = None
    line: Optional[int] = None

    @property
    def known(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class InvalidPort:
    raw: str
    file: str
    line: Optional[int]
    context: str


@dataclass(frozen=True)
class ParseProblem:
    """A parse or host failure for one artifact, surfaced by the syntax rule."""
    artifact: str
    line: Optional[int]
    message: str
    kind: str = "parse"   # parse | host | missing


@dataclass(frozen=True)
class ServiceFacts:
    name: str
    spec: ServiceSpec
    role: str                                   # external | internal | proxy
    context_dir: Optional[str] = None           # Display path relative to project root
    context_exists: bool = False
    recipe_file: Optional[str] = None
    recipe: Optional[BuildRecipe] = None
    recipe_missing: bool = False
    copy_sources: Tuple[CopySource, ...] = ()
    stage_facts: Tuple[StageFact, ...] = ()
    declared_port: PortFact = field(default_factory=PortFact)
    env_declared: FrozenSet[str] = frozenset()
    env_usages: Tuple[EnvUsage, ...] = ()
    manifest: Optional[DependencyManifest] = None
    invalid_ports: Tuple[InvalidPort, ...] = ()

    @property
    def aliases(self) -> FrozenSet[str]:
        names = {self.name}
        if self.spec.container_name:
            names.add(self.spec.container_name)
        return frozenset(names)

    @property
    def published_ports(self) -> FrozenSet[int]:
        return frozenset(p.published for p in self.spec.ports if p.published is not None)


@dataclass(frozen=True)
class FactBundle:
    project_root: Path
    compose_file: Optional[str] = None
    proxy_file: Optional[str] = None
    proxy_dialect: Optional[str] = None
    services: Tuple[ServiceFacts, ...] = ()
    routes: Tuple[RouteBlock, ...] = ()
    documented_env: FrozenSet[str] = frozenset()
    documented_env_file: Optional[str] = None
    dotenv_names: FrozenSet[str] = frozenset()
    interpolations: Tuple[Tuple[str, bool, int], ...] = ()
    build_tools: FrozenSet[str] = frozenset()
    ignored_env: FrozenSet[str] = frozenset()
    problems: Tuple[ParseProblem, ...] = ()

    def service(self, name: str) -> Optional[ServiceFacts]:
        for facts in self.services:
            if facts.name == name:
                return facts
        return None

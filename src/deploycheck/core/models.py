#!/usr/bin/env python3
"""
DEPLOYCHECK CORE MODELS
-----------------------
Defines the fundamental data structures used across the DeployCheck engine.
These models represent the parsed deployment artifacts (build recipes,
service compositions, proxy routes) and the findings reported about them.

Every model is frozen: once a parser has produced it, no later phase may
mutate it.

Author: DeployCheck Team
Date: 2026-10-18
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Dict, Any, Mapping


class DeployCheckError(Exception):
    """Base class for every error raised by DeployCheck."""


class ParseError(DeployCheckError):
    """
    Raised by a parser when an artifact cannot be turned into a model.
    Carries the artifact name and the offending line for reporting.
    """

    def __init__(self, artifact: str, line: Optional[int], message: str):
        self.artifact = artifact
        self.line = line
        self.message = message
        location = f"{artifact}:{line}" if line else artifact
        super().__init__(f"{location}: {message}")


class ConfigError(DeployCheckError):
    """Raised when the checker configuration file is invalid."""


class Severity(Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    PASS = "PASS"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.PASS: 2}


class Category(Enum):
    BUILD_CONTEXT = "build-context"
    BUILD_DEPS = "build-deps"
    ENV_COVERAGE = "env-coverage"
    PORT_CONSISTENCY = "port-consistency"
    SYNTAX = "syntax"


class InstructionKind(Enum):
    FROM = "FROM"
    COPY = "COPY"
    ADD = "ADD"
    RUN = "RUN"
    EXPOSE = "EXPOSE"
    ENV = "ENV"
    ARG = "ARG"
    CMD = "CMD"
    ENTRYPOINT = "ENTRYPOINT"
    WORKDIR = "WORKDIR"
    USER = "USER"
    LABEL = "LABEL"
    VOLUME = "VOLUME"
    HEALTHCHECK = "HEALTHCHECK"
    SHELL = "SHELL"
    STOPSIGNAL = "STOPSIGNAL"
    ONBUILD = "ONBUILD"
    MAINTAINER = "MAINTAINER"


# --- Build recipe ---------------------------------------------------------

@dataclass(frozen=True)
class BuildInstruction:
    """
    One step of a build recipe.

    `arguments` is the instruction text after the keyword with line
    continuations joined and leading `--flag=value` options removed;
    those options live in `flags`.
    """
    kind: InstructionKind
    arguments: str
    stage_index: int
    line_no: int
    flags: Mapping[str, str] = field(default_factory=dict)
    raw: str = ""


@dataclass(frozen=True)
class BuildStage:
    index: int
    base_image: str
    name: Optional[str] = None
    line_no: int = 0

    @property
    def label(self) -> str:
        return self.name or f"stage {self.index}"


@dataclass(frozen=True)
class BuildRecipe:
    path: str
    instructions: Tuple[BuildInstruction, ...] = ()
    stages: Tuple[BuildStage, ...] = ()

    def stage_instructions(self, stage_index: int) -> Tuple[BuildInstruction, ...]:
        return tuple(i for i in self.instructions if i.stage_index == stage_index)

    @property
    def final_stage(self) -> Optional[BuildStage]:
        return self.stages[-1] if self.stages else None


# --- Composition ----------------------------------------------------------

@dataclass(frozen=True)
class PortMapping:
    """
    A single `ports:` entry. `target` is the container-side port;
    it is None when the declaration text could not be parsed.
    """
    raw: str
    target: Optional[int] = None
    published: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"
    line_no: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return self.target is not None


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    image: Optional[str] = None
    build_context: Optional[str] = None     # Relative to the composition file
    recipe_path: Optional[str] = None       # Relative to the build context
    build_args: Mapping[str, Optional[str]] = field(default_factory=dict)
    ports: Tuple[PortMapping, ...] = ()
    expose: Tuple[PortMapping, ...] = ()
    environment: Mapping[str, Optional[str]] = field(default_factory=dict)
    env_files: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    container_name: Optional[str] = None
    labels: Mapping[str, str] = field(default_factory=dict)
    line_no: Optional[int] = None

    @property
    def has_build(self) -> bool:
        return self.build_context is not None


@dataclass(frozen=True)
class ServiceComposition:
    path: str
    services: Mapping[str, ServiceSpec] = field(default_factory=dict)
    networks: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    interpolations: Tuple[Tuple[str, bool, int], ...] = ()  # (name, has_default, line)


# --- Proxy ----------------------------------------------------------------

@dataclass(frozen=True)
class RouteBlock:
    """A reverse-proxy rule mapping an incoming match to one upstream."""
    site: str
    upstream_host: str
    upstream_port: Optional[int]
    matcher: Optional[str] = None
    raw: str = ""
    line_no: int = 0


@dataclass(frozen=True)
class ProxyConfig:
    path: str
    dialect: str
    routes: Tuple[RouteBlock, ...] = ()


# --- Environment ----------------------------------------------------------

@dataclass(frozen=True)
class EnvUsage:
    """One reference to an environment variable found in source text."""
    name: str
    path: str
    line_no: int
    recognizer: str = ""


@dataclass(frozen=True)
class EnvFile:
    path: str
    entries: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DependencyManifest:
    path: str
    dependencies: Tuple[str, ...] = ()
    dev_dependencies: Tuple[str, ...] = ()
    scripts: Mapping[str, str] = field(default_factory=dict)


# --- Findings -------------------------------------------------------------

@dataclass(frozen=True)
class Finding:
    """
    The atomic unit of a DeployCheck report.
    Created by exactly one rule and never modified afterwards.
    """
    severity: Severity
    category: Category
    message: str
    suggested_fix: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    rule: str = ""

    @property
    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    @property
    def location(self) -> str:
        if not self.file:
            return ""
        return f"{self.file}:{self.line}" if self.line else self.file

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "suggested_fix": self.suggested_fix,
            "file": self.file,
            "line": self.line,
            "rule": self.rule,
        }

    def __str__(self):
        prefix = f"{self.location}: " if self.location else ""
        return f"[{self.severity.value}] {prefix}{self.message}"

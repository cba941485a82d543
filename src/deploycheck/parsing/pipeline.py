#!/usr/bin/env python3
"""
DEPLOYCHECK ANALYSIS PIPELINE - The Intake Desk
-----------------------------------------------
Reads every deployment artifact of a project, runs the matching parser
and the fact extractors, and assembles a single read-only FactBundle.

Per-artifact failures never stop the pipeline: a parse error or an
unreadable file becomes a ParseProblem and the remaining artifacts are
still processed. Nothing on disk is ever written.

Author: DeployCheck Team
Date: 2026-10-18
"""

import glob
import logging
import os
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from deploycheck.core.config import CheckerConfig
from deploycheck.core.models import (
    BuildRecipe, DependencyManifest, EnvFile, EnvUsage, ParseError, ProxyConfig,
    ServiceComposition, ServiceSpec
)
from deploycheck.parsing.compose import parse_compose
from deploycheck.parsing.context import CopySource, FactBundle, ParseProblem, ServiceFacts
from deploycheck.parsing.envfile import parse_env_file
from deploycheck.parsing import extractors
from deploycheck.parsing.lexer import parse_recipe
from deploycheck.parsing.manifest import parse_manifest
from deploycheck.parsing.proxy import parse_proxy
from deploycheck.parsing.scanner import EnvScanner

logger = logging.getLogger("deploycheck.pipeline")

T = TypeVar("T")
GLOB_CHARS = set("*?[")
INTERNAL_NAME_HINTS = ("worker", "cron", "scheduler", "queue", "migrate", "migration", "beat")


class AnalysisPipeline:
    """
    The Orchestrator: parse, extract, resolve, in a strictly defined order.
    Holds configuration only; every run starts from a clean slate.
    """

    def __init__(self, config: Optional[CheckerConfig] = None):
        self.config = config or CheckerConfig()
        self.scanner = EnvScanner(self.config.recognizers, self.config.exclude_dirs,
                                  self.config.max_file_bytes)

    # --- Artifact IO ------------------------------------------------------

    def _display(self, root: Path, path: Path) -> str:
        try:
            return path.resolve().relative_to(root).as_posix()
        except ValueError:
            return str(path)

    def _load(self, root: Path, path: Path, parser: Callable[[str, str], T],
              problems: List[ParseProblem]) -> Optional[T]:
        """Reads and parses one artifact, converting failures into problems."""
        name = self._display(root, path)
        try:
            text = path.read_text(encoding='utf-8-sig')
        except UnicodeDecodeError as e:
            problems.append(ParseProblem(name, None, f"File is not valid UTF-8 text: {e.reason}", "host"))
            return None
        except OSError as e:
            problems.append(ParseProblem(name, None, f"Unable to read file: {e.strerror or e}", "host"))
            return None
        try:
            return parser(text, name)
        except ParseError as e:
            logger.info(f"Parse error in {name}: {e}")
            problems.append(ParseProblem(e.artifact, e.line, e.message, "parse"))
            return None

    def _locate(self, root: Path, explicit: Optional[Path], candidates: Tuple[str, ...]) -> Optional[Path]:
        """The explicit path when given, else the first existing candidate."""
        if explicit is not None:
            return explicit if explicit.is_absolute() else root / explicit
        for candidate in candidates:
            path = root / candidate
            if path.is_file():
                return path
        return None

    # --- Entry point ------------------------------------------------------

    def run(self, project_root: Path, compose_path: Optional[Path] = None,
            proxy_path: Optional[Path] = None, env_example_path: Optional[Path] = None) -> FactBundle:
        root = project_root.resolve()
        problems: List[ParseProblem] = []

        # --- PHASE 1: ARTIFACT PARSING ---
        compose_file = self._locate(root, compose_path, self.config.compose_files)
        composition: Optional[ServiceComposition] = None
        if compose_file is None:
            problems.append(ParseProblem(
                "docker-compose.yml", None,
                f"No composition file found (looked for {', '.join(self.config.compose_files)})", "host"))
        else:
            composition = self._load(root, compose_file, parse_compose, problems)

        proxy_file = self._locate(root, proxy_path, self.config.proxy_files)
        proxy: Optional[ProxyConfig] = None
        if proxy_file is None:
            problems.append(ParseProblem(
                "Caddyfile", None,
                f"No reverse-proxy configuration found (looked for {', '.join(self.config.proxy_files)})",
                "missing"))
        else:
            proxy = self._load(root, proxy_file, parse_proxy, problems)

        env_example_file = env_example_path or Path(self.config.env_example)
        if not env_example_file.is_absolute():
            env_example_file = root / env_example_file
        documented: Optional[EnvFile] = None
        if env_example_file.is_file():
            documented = self._load(root, env_example_file, parse_env_file, problems)
        elif env_example_path is not None:
            problems.append(ParseProblem(self._display(root, env_example_file), None,
                                         "Documented environment file not found", "host"))

        dotenv: Optional[EnvFile] = None
        dotenv_file = root / self.config.env_file
        if dotenv_file.is_file():
            dotenv = self._load(root, dotenv_file, parse_env_file, problems)

        # --- PHASE 2: PER-SERVICE EXTRACTION ---
        services: List[ServiceFacts] = []
        if composition is not None:
            compose_dir = compose_file.resolve().parent
            scan_cache: Dict[Tuple[Path, ...], Tuple[EnvUsage, ...]] = {}
            for spec in composition.services.values():
                services.append(self._service_facts(root, compose_dir, composition.path, spec,
                                                    problems, scan_cache))

        logger.debug(f"Extracted facts for {len(services)} services")

        return FactBundle(
            project_root=root,
            compose_file=composition.path if composition else None,
            proxy_file=proxy.path if proxy else None,
            proxy_dialect=proxy.dialect if proxy else None,
            services=tuple(services),
            routes=proxy.routes if proxy else (),
            documented_env=frozenset(documented.entries) if documented else frozenset(),
            documented_env_file=documented.path if documented else None,
            dotenv_names=frozenset(dotenv.entries) if dotenv else frozenset(),
            interpolations=composition.interpolations if composition else (),
            build_tools=frozenset(self.config.build_tools),
            ignored_env=frozenset(self.config.ignored_env),
            problems=tuple(problems),
        )

    # --- Services ---------------------------------------------------------

    def _role(self, spec: ServiceSpec) -> str:
        image = (spec.image or "").lower()
        if spec.name in self.config.internal_services:
            return "internal"
        if spec.name in self.config.external_services:
            return "external"
        if any(hint in image for hint in self.config.proxy_images) and not spec.has_build:
            return "proxy"
        if any(hint in image for hint in self.config.internal_images):
            return "internal"
        if not spec.has_build:
            return "internal"
        if any(hint in spec.name.lower() for hint in INTERNAL_NAME_HINTS):
            return "internal"
        return "external"

    def _service_facts(self, root: Path, compose_dir: Path, compose_name: str, spec: ServiceSpec,
                       problems: List[ParseProblem],
                       scan_cache: Dict[Tuple[Path, ...], Tuple[EnvUsage, ...]]) -> ServiceFacts:
        context_path: Optional[Path] = None
        context_display = None
        context_exists = False
        recipe: Optional[BuildRecipe] = None
        recipe_display = None
        recipe_missing = False

        if spec.build_context is not None:
            context_path = (compose_dir / spec.build_context).resolve()
            context_display = self._display(root, context_path)
            context_exists = context_path.is_dir()

        if context_exists:
            recipe_path = context_path / (spec.recipe_path or self.config.default_recipe)
            recipe_display = self._display(root, recipe_path)
            if recipe_path.is_file():
                recipe = self._load(root, recipe_path, parse_recipe, problems)
            else:
                recipe_missing = True

        sources: Tuple[CopySource, ...] = ()
        stages = ()
        if recipe is not None:
            sources = tuple(resolve_copy_source(context_path, s)
                            for s in extractors.copy_sources(recipe, dict(spec.build_args)))
            stages = extractors.stage_install_facts(recipe)

        # Environment: declared names from compose, env files and the recipe
        env_file_names = []
        for env_path in spec.env_files:
            env_file = (compose_dir / env_path).resolve()
            loaded = None
            if env_file.is_file():
                loaded = self._load(root, env_file, parse_env_file, problems)
            else:
                problems.append(ParseProblem(self._display(root, env_file), None,
                                             f"env_file of service '{spec.name}' not found", "host"))
            if loaded is not None:
                env_file_names.extend(loaded.entries)
        declared = extractors.declared_env_names(spec, recipe, env_file_names)

        usages: Tuple[EnvUsage, ...] = ()
        if context_exists:
            scan_roots = self._scan_roots(context_path, sources)
            if scan_roots not in scan_cache:
                found: List[EnvUsage] = []
                for scan_root in scan_roots:
                    tree_usages, unreadable = self.scanner.scan_tree(scan_root, relative_to=root)
                    found.extend(tree_usages)
                    for path, error in unreadable:
                        problems.append(ParseProblem(path, None, f"Unable to read source file: {error}", "host"))
                scan_cache[scan_roots] = tuple(found)
            usages = extractors.referenced_env_names(scan_cache[scan_roots])

        manifest: Optional[DependencyManifest] = None
        if any(s.has_production_only_install for s in stages):
            for candidate in (context_path / self.config.manifest_file, root / self.config.manifest_file):
                if candidate.is_file():
                    manifest = self._load(root, candidate, parse_manifest, problems)
                    break

        port, invalid_ports = extractors.declared_port(recipe, spec, compose_name)

        return ServiceFacts(
            name=spec.name,
            spec=spec,
            role=self._role(spec),
            context_dir=context_display,
            context_exists=context_exists,
            recipe_file=recipe_display,
            recipe=recipe,
            recipe_missing=recipe_missing,
            copy_sources=sources,
            stage_facts=stages,
            declared_port=port,
            env_declared=declared,
            env_usages=usages,
            manifest=manifest,
            invalid_ports=invalid_ports,
        )

    def _scan_roots(self, context: Path, sources: Tuple[CopySource, ...]) -> Tuple[Path, ...]:
        """
        Directories whose source text ends up in the image. When the recipe copies
        specific subdirectories only those are scanned, otherwise the whole context.
        """
        roots = []
        for source in sources:
            if not source.resolves or source.escapes_context:
                continue
            relative = source.path.lstrip('/')
            if relative in ("", ".", "./") or GLOB_CHARS & set(relative):
                return (context,)
            candidate = (context / relative).resolve()
            if candidate.is_dir():
                roots.append(candidate)
            elif candidate.is_file() and candidate.parent == context:
                continue
            elif candidate.is_file():
                roots.append(candidate.parent)
        if not roots:
            return (context,)
        unique = []
        for path in sorted(set(roots)):
            if not any(parent in unique for parent in path.parents):
                unique.append(path)
        return tuple(unique)


def resolve_copy_source(context: Path, source: CopySource) -> CopySource:
    """
    Checks one COPY/ADD source against the build context on disk.
    Returns a copy of the source with `resolves` and `escapes_context` filled in.
    A path still holding an unresolved variable is returned unchecked.
    """
    if '$' in source.path:
        return source
    relative = source.path.lstrip('/') or "."
    normalized = os.path.normpath(PurePosixPath(relative).as_posix())
    if normalized == ".." or normalized.startswith("../"):
        return replace(source, resolves=False, escapes_context=True)

    if GLOB_CHARS & set(relative):
        return replace(source, resolves=bool(glob.glob(str(context / relative))))

    target = (context / normalized).resolve()
    try:
        target.relative_to(context)
    except ValueError:
        # A symlink pointing outside the context is not sent to the builder
        return replace(source, resolves=False, escapes_context=True)
    return replace(source, resolves=target.exists())

#!/usr/bin/env python3
"""
DEPLOYCHECK CONSISTENCY RULES
-----------------------------
The rule library. Each rule is a pure function of the FactBundle that
returns zero or more Findings. Rules never look at each other's output
and never modify the bundle, so their order only affects the order in
which findings are listed.

Author: DeployCheck Team
Date: 2026-10-18
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from deploycheck.core.models import Category, Finding, RouteBlock, Severity
from deploycheck.parsing.context import FactBundle, ServiceFacts

logger = logging.getLogger("deploycheck.rules")

Rule = Callable[[FactBundle], List[Finding]]
LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "::1", "host.docker.internal")


def _compose_name(bundle: FactBundle) -> str:
    return bundle.compose_file or "docker-compose.yml"


# --- Syntax ---------------------------------------------------------------

def syntax_rule(bundle: FactBundle) -> List[Finding]:
    """Surfaces parse errors, unreadable artifacts and unparsable ports."""
    findings = []
    for problem in bundle.problems:
        if problem.kind == "missing":
            findings.append(Finding(
                severity=Severity.WARNING,
                category=Category.SYNTAX,
                message=problem.message,
                suggested_fix="Pass the proxy configuration explicitly with --proxy.",
                file=problem.artifact,
                rule="syntax",
            ))
            continue
        prefix = "Parse error" if problem.kind == "parse" else "Cannot read artifact"
        findings.append(Finding(
            severity=Severity.CRITICAL,
            category=Category.SYNTAX,
            message=f"{prefix} in {problem.artifact}: {problem.message}",
            file=problem.artifact,
            line=problem.line,
            rule="syntax",
        ))

    for service in bundle.services:
        for port in service.invalid_ports:
            findings.append(Finding(
                severity=Severity.CRITICAL,
                category=Category.SYNTAX,
                message=f"Unparsable port '{port.raw}' in {port.context} of service '{service.name}'",
                suggested_fix="Ports must be integers between 0 and 65535 (optionally '/tcp' or '/udp').",
                file=port.file,
                line=port.line,
                rule="syntax",
            ))
    return findings


# --- Build context --------------------------------------------------------

def build_context_rule(bundle: FactBundle) -> List[Finding]:
    """Every COPY/ADD source must exist inside the service's build context."""
    findings = []
    for service in bundle.services:
        if not service.spec.has_build:
            continue

        if not service.context_exists:
            findings.append(Finding(
                severity=Severity.CRITICAL,
                category=Category.BUILD_CONTEXT,
                message=(f"Service '{service.name}' declares build context "
                         f"'{service.spec.build_context}' which does not exist"),
                suggested_fix="Point build.context at an existing directory relative to the composition file.",
                file=_compose_name(bundle),
                line=service.spec.line_no,
                rule="build-context",
            ))
            continue

        if service.recipe_missing:
            findings.append(Finding(
                severity=Severity.CRITICAL,
                category=Category.BUILD_CONTEXT,
                message=f"Build recipe '{service.recipe_file}' for service '{service.name}' not found",
                suggested_fix="Add the Dockerfile to the build context or set build.dockerfile to its path.",
                file=_compose_name(bundle),
                line=service.spec.line_no,
                rule="build-context",
            ))
            continue

        context = service.context_dir or "."
        for source in service.copy_sources:
            if source.resolves is not False:
                continue
            if source.escapes_context:
                message = (f"{source.instruction} source '{source.path}' in service '{service.name}' "
                           f"points outside its build context '{context}'")
            else:
                message = (f"{source.instruction} source '{source.path}' in service '{service.name}' "
                           f"does not resolve under build context '{context}'")
            findings.append(Finding(
                severity=Severity.CRITICAL,
                category=Category.BUILD_CONTEXT,
                message=message,
                suggested_fix=(
                    "Set build.context to the common ancestor of the recipe and the copied files "
                    f"(usually the project root '.'), set build.dockerfile to '{service.recipe_file}', "
                    "and rewrite COPY paths relative to the new context."
                ),
                file=service.recipe_file,
                line=source.line_no,
                rule="build-context",
            ))
    return findings


# --- Build dependencies ---------------------------------------------------

def build_deps_rule(bundle: FactBundle) -> List[Finding]:
    """Production-only install followed by a build that needs dev tooling."""
    findings = []
    for service in bundle.services:
        manifest = service.manifest
        if manifest is None:
            continue
        tools = [d for d in manifest.dev_dependencies
                 if d in bundle.build_tools and d not in manifest.dependencies]
        if not tools:
            continue
        for stage in service.stage_facts:
            if not (stage.has_production_only_install and stage.has_build_step_after):
                continue
            findings.append(Finding(
                severity=Severity.WARNING,
                category=Category.BUILD_DEPS,
                message=(
                    f"Stage '{stage.stage}' of service '{service.name}' installs production-only "
                    f"dependencies ('{stage.install_command}', line {stage.install_line}) and then runs "
                    f"'{stage.build_command}' (line {stage.build_line}), but {', '.join(tools)} "
                    f"{'is a devDependency' if len(tools) == 1 else 'are devDependencies'} in {manifest.path}"
                ),
                suggested_fix=(
                    "Drop the production-only flag from that install step so build tooling is present, "
                    "then prune dev dependencies after the build (e.g. 'npm prune --omit=dev') "
                    "or copy only the build output into a later runtime stage."
                ),
                file=service.recipe_file,
                line=stage.install_line,
                rule="build-deps",
            ))
    return findings


# --- Environment coverage -------------------------------------------------

def env_coverage_rule(bundle: FactBundle) -> List[Finding]:
    """Referenced variables must be declared for the service or documented."""
    findings = []
    documented = bundle.documented_env
    documented_name = bundle.documented_env_file or ".env.example"

    for service in bundle.services:
        if not service.context_exists:
            continue
        referenced = set()
        for usage in service.env_usages:
            referenced.add(usage.name)
            if usage.name in bundle.ignored_env:
                continue
            if usage.name in service.env_declared or usage.name in documented:
                continue
            findings.append(Finding(
                severity=Severity.WARNING,
                category=Category.ENV_COVERAGE,
                message=(f"Service '{service.name}' reads {usage.name} ({usage.path}:{usage.line_no}) "
                         f"but it is neither set in its environment nor documented in {documented_name}"),
                suggested_fix=(f"Add {usage.name} to services.{service.name}.environment in "
                               f"{_compose_name(bundle)} and document it in {documented_name}."),
                file=usage.path,
                line=usage.line_no,
                rule="env-coverage",
            ))

        for name in list(service.spec.environment) + list(service.spec.build_args):
            if name in referenced:
                continue
            referenced.add(name)
            findings.append(Finding(
                severity=Severity.PASS,
                category=Category.ENV_COVERAGE,
                message=f"Service '{service.name}' declares {name} but no scanned source references it",
                file=_compose_name(bundle),
                line=service.spec.line_no,
                rule="env-coverage",
            ))

    reported = set()
    for name, has_default, line in bundle.interpolations:
        if has_default or name in reported:
            continue
        reported.add(name)
        if name in bundle.dotenv_names or name in documented or name in bundle.ignored_env:
            continue
        findings.append(Finding(
            severity=Severity.WARNING,
            category=Category.ENV_COVERAGE,
            message=(f"{_compose_name(bundle)} interpolates ${{{name}}} without a default, "
                     f"but {name} is not defined in .env or {documented_name}"),
            suggested_fix=f"Document {name} in {documented_name} or use ${{{name}:-default}}.",
            file=_compose_name(bundle),
            line=line,
            rule="env-coverage",
        ))
    return findings


# --- Port consistency -----------------------------------------------------

def _route_label(route: RouteBlock) -> str:
    site = route.site or "<default>"
    return f"{site} {route.matcher}" if route.matcher else site


def _match_routes(bundle: FactBundle) -> Tuple[Dict[str, List[RouteBlock]], List[RouteBlock]]:
    """Assigns each route to the service it targets; returns leftovers separately."""
    by_alias: Dict[str, ServiceFacts] = {}
    for service in bundle.services:
        for alias in service.aliases:
            by_alias.setdefault(alias, service)

    matched: Dict[str, List[RouteBlock]] = {s.name: [] for s in bundle.services}
    unmatched: List[RouteBlock] = []
    for route in bundle.routes:
        service: Optional[ServiceFacts] = by_alias.get(route.upstream_host)
        if service is None and route.upstream_host in LOCAL_HOSTS:
            service = next((s for s in bundle.services
                            if route.upstream_port in s.published_ports), None)
        if service is None:
            unmatched.append(route)
        else:
            matched[service.name].append(route)
    return matched, unmatched


def port_consistency_rule(bundle: FactBundle) -> List[Finding]:
    """Proxy routes must target the port each service actually listens on."""
    findings = []
    matched, unmatched = _match_routes(bundle)
    proxy_name = bundle.proxy_file or "proxy configuration"

    for service in bundle.services:
        routes = matched[service.name]
        port = service.declared_port

        for route in routes:
            if route.upstream_host in LOCAL_HOSTS:
                continue  # Matched through the published host port
            if not port.known or route.upstream_port is None or route.upstream_port == port.value:
                continue
            where = f"{port.origin} in {port.file}" + (f":{port.line}" if port.line else "")
            findings.append(Finding(
                severity=Severity.CRITICAL,
                category=Category.PORT_CONSISTENCY,
                message=(f"Route '{_route_label(route)}' sends traffic to {route.upstream_host}:{route.upstream_port} "
                         f"but service '{service.name}' listens on {port.value} ({where})"),
                suggested_fix=(f"Change the route to {route.upstream_host}:{port.value}, or make "
                               f"'{service.name}' listen on {route.upstream_port}."),
                file=proxy_name,
                line=route.line_no,
                rule="port-consistency",
            ))

        if not routes and service.role == "external" and bundle.proxy_file is not None:
            findings.append(Finding(
                severity=Severity.WARNING,
                category=Category.PORT_CONSISTENCY,
                message=(f"Service '{service.name}' has no route in {proxy_name}; "
                         "it will not be reachable through the reverse proxy"),
                suggested_fix=(f"Add a reverse_proxy route to {service.name}:"
                               f"{port.value if port.known else '<port>'}, or list the service under "
                               "internal_services in .deploycheck.yaml."),
                file=_compose_name(bundle),
                line=service.spec.line_no,
                rule="port-consistency",
            ))

    if bundle.compose_file is not None:
        for route in unmatched:
            findings.append(Finding(
                severity=Severity.WARNING,
                category=Category.PORT_CONSISTENCY,
                message=(f"Route '{_route_label(route)}' targets {route.upstream_host}:{route.upstream_port} "
                         f"which matches no service in {bundle.compose_file}"),
                suggested_fix="Use the compose service name as the upstream host.",
                file=proxy_name,
                line=route.line_no,
                rule="port-consistency",
            ))
    return findings


# --- Registry -------------------------------------------------------------

DEFAULT_RULES: Tuple[Tuple[str, Rule, str], ...] = (
    ("syntax", syntax_rule, "Parse errors, unreadable artifacts and unparsable ports"),
    ("build-context", build_context_rule, "COPY/ADD sources resolve under the service build context"),
    ("build-deps", build_deps_rule, "Production-only installs do not starve a later build step"),
    ("env-coverage", env_coverage_rule, "Referenced environment variables are declared or documented"),
    ("port-consistency", port_consistency_rule, "Proxy routes target the port each service listens on"),
)


class RuleEngine:
    """
    Runs the active rules over one FactBundle.
    A rule that crashes is a defect in the rule, so the error propagates.
    """

    def __init__(self, rules: Optional[Sequence[Tuple[str, Rule, str]]] = None,
                 disabled: Sequence[str] = ()):
        registry = rules if rules is not None else DEFAULT_RULES
        self.active_rules = [(name, rule) for name, rule, _ in registry if name not in disabled]

    def evaluate(self, bundle: FactBundle) -> List[Finding]:
        findings: List[Finding] = []
        for name, rule in self.active_rules:
            produced = rule(bundle)
            logger.debug(f"Rule '{name}' produced {len(produced)} findings")
            findings.extend(produced)
        return findings

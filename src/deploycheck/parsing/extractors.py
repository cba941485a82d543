#!/usr/bin/env python3
"""
DEPLOYCHECK FACT EXTRACTORS
---------------------------
Pure functions from parsed models to normalized facts.

None of these functions raise on odd input: anything that cannot be
determined is returned as "unknown" (None / empty) so that the rules
decide whether the gap is itself worth reporting.

Author: DeployCheck Team
Date: 2026-10-18
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from deploycheck.core.models import (
    BuildRecipe, BuildInstruction, EnvUsage, InstructionKind, ProxyConfig, ServiceSpec
)
from deploycheck.parsing.context import CopySource, InvalidPort, PortFact, StageFact
from deploycheck.parsing.lexer import split_arguments

VARIABLE = re.compile(r'\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?::?[-+]([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))')

PRODUCTION_INSTALL = re.compile(
    r'\bnpm\s+(?:ci|install|i)\b[^&;|]*?(?:--production\b|--only[= ]prod(?:uction)?\b|--omit[= ]dev\b)'
    r'|\byarn(?:\s+install)?\b[^&;|]*?--production\b'
    r'|\byarn\s+workspaces\s+focus\b[^&;|]*?--production\b'
    r'|\bpnpm\s+(?:install|i)\b[^&;|]*?(?:--prod\b|--production\b|\s-P\b)'
    r'|\bNODE_ENV=production\s+(?:npm\s+(?:ci|install|i)|yarn(?:\s+install)?|pnpm\s+(?:install|i))\b'
)
PLAIN_INSTALL = re.compile(r'\bnpm\s+(?:ci|install|i)\b|\byarn(?:\s+install)?\s*(?:$|&&|;|\|)|\bpnpm\s+(?:install|i)\b')
BUILD_STEP = re.compile(
    r'\b(?:npm|pnpm)\s+run\s+build[\w:.-]*'
    r'|\byarn\s+(?:run\s+)?build[\w:.-]*'
    r'|\bpnpm\s+build[\w:.-]*'
    r'|\bnpx\s+(?:tsc|vite|webpack|next|ng|rollup|esbuild|parcel|tsup)\b'
    r'|(?<![\w-])tsc(?![\w-])'
    r'|\b(?:vite|next|ng|nuxt)\s+build\b'
)

PORT_FLAG = re.compile(r'^(?:--port|-p|--server\.port|--http-port|-l|--listen-port)$')
PORT_ASSIGN = re.compile(r'^(?:--port|--server\.port|--http-port|--listen-port|PORT)=(\S+)$')
BIND_FLAG = re.compile(r'^(?:--bind|-b|--listen|--host-port)$')
BIND_ASSIGN = re.compile(r'^(?:--bind|--listen)=(\S+)$')
RUN_COMMAND_KINDS = (InstructionKind.CMD, InstructionKind.ENTRYPOINT)


# --- Variable handling ----------------------------------------------------

def parse_env_pairs(instruction: BuildInstruction) -> Dict[str, Optional[str]]:
    """Names (and values) declared by an ENV or ARG instruction."""
    words = split_arguments(instruction.arguments)
    result: Dict[str, Optional[str]] = {}
    if not words:
        return result
    if instruction.kind is InstructionKind.ENV and '=' not in words[0]:
        # Legacy form: ENV NAME value with spaces
        result[words[0]] = " ".join(words[1:]) if len(words) > 1 else ""
        return result
    for word in words:
        name, sep, value = word.partition('=')
        if name:
            result[name] = value if sep else None
    return result


def substitute(text: str, variables: Dict[str, Optional[str]]) -> str:
    """Expands $VAR / ${VAR} / ${VAR:-default}; unknown variables stay as-is."""
    def expand(match):
        name = match.group(1) or match.group(3)
        value = variables.get(name)
        if value:
            return value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)
    return VARIABLE.sub(expand, text)


def stage_variables(recipe: BuildRecipe, stage_index: int,
                    overrides: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, Optional[str]]:
    """ARG/ENV values visible in a stage: global ARGs, stage ARG/ENV, then build args."""
    variables: Dict[str, Optional[str]] = {}
    for instruction in recipe.instructions:
        if instruction.stage_index not in (-1, stage_index):
            continue
        if instruction.kind in (InstructionKind.ARG, InstructionKind.ENV):
            for name, value in parse_env_pairs(instruction).items():
                if value is not None or name not in variables:
                    variables[name] = value
    for name, value in (overrides or {}).items():
        if value is not None:
            variables[name] = value
    return variables


def recipe_env_names(recipe: Optional[BuildRecipe]) -> Tuple[str, ...]:
    if recipe is None:
        return ()
    names: List[str] = []
    for instruction in recipe.instructions:
        if instruction.kind in (InstructionKind.ENV, InstructionKind.ARG):
            names.extend(n for n in parse_env_pairs(instruction) if n not in names)
    return tuple(names)


# --- Copy sources ---------------------------------------------------------

def copy_sources(recipe: BuildRecipe,
                 build_args: Optional[Dict[str, Optional[str]]] = None) -> Tuple[CopySource, ...]:
    """
    Every local COPY/ADD source path, in recipe order, with ARG/ENV references
    expanded. Copies from other stages or images (--from), heredocs and remote
    URLs are skipped.
    """
    sources = []
    for instruction in recipe.instructions:
        if instruction.kind not in (InstructionKind.COPY, InstructionKind.ADD):
            continue
        if "from" in instruction.flags or "heredoc" in instruction.flags:
            continue
        words = split_arguments(instruction.arguments)
        if len(words) < 2:
            continue
        stage = recipe.stages[instruction.stage_index].label if instruction.stage_index >= 0 else "global"
        variables = stage_variables(recipe, instruction.stage_index, build_args)
        for source in words[:-1]:
            source = substitute(source, variables)
            if re.match(r'^(?:https?|git)://|^git@', source):
                continue
            sources.append(CopySource(path=source, instruction=instruction.kind.value,
                                      line_no=instruction.line_no, stage=stage))
    return tuple(sources)


# --- Build dependencies ---------------------------------------------------

def stage_install_facts(recipe: BuildRecipe) -> Tuple[StageFact, ...]:
    """
    Per stage: does a production-only dependency install happen, and is
    a build step invoked after it in the same stage?
    """
    facts = []
    for stage in recipe.stages:
        node_env_production = False
        install: Optional[Tuple[int, str]] = None
        build: Optional[Tuple[int, str]] = None

        for instruction in recipe.stage_instructions(stage.index):
            if instruction.kind is InstructionKind.ENV:
                value = parse_env_pairs(instruction).get("NODE_ENV")
                if value is not None:
                    node_env_production = value == "production"
                continue
            if instruction.kind is not InstructionKind.RUN:
                continue

            text = instruction.arguments
            install_match = PRODUCTION_INSTALL.search(text)
            if install_match is None and node_env_production:
                install_match = PLAIN_INSTALL.search(text)

            if install is None and install_match is not None:
                install = (instruction.line_no, install_match.group(0).strip())
                build_match = BUILD_STEP.search(text, install_match.end())
                if build_match:
                    build = (instruction.line_no, build_match.group(0).strip())
                continue

            if install is not None and build is None:
                build_match = BUILD_STEP.search(text)
                if build_match:
                    build = (instruction.line_no, build_match.group(0).strip())

        facts.append(StageFact(
            stage=stage.label,
            stage_index=stage.index,
            has_production_only_install=install is not None,
            has_build_step_after=build is not None,
            install_line=install[0] if install else None,
            build_line=build[0] if build else None,
            install_command=install[1] if install else "",
            build_command=build[1] if build else "",
        ))
    return tuple(facts)


# --- Environment ----------------------------------------------------------

def referenced_env_names(usages: Iterable[EnvUsage]) -> Tuple[EnvUsage, ...]:
    """First usage of each variable name, in scan order."""
    seen = {}
    for usage in usages:
        if usage.name not in seen:
            seen[usage.name] = usage
    return tuple(seen.values())


def declared_env_names(service: ServiceSpec, recipe: Optional[BuildRecipe],
                       env_file_names: Iterable[str] = ()) -> frozenset:
    names = set(service.environment)
    names.update(service.build_args)
    names.update(env_file_names)
    names.update(recipe_env_names(recipe))
    return frozenset(names)


# --- Ports ----------------------------------------------------------------

def _port_value(raw: str) -> Tuple[Optional[int], bool]:
    """
    (port, valid). An unresolved variable is unknown but valid;
    anything else that is not a 0-65535 integer is invalid.
    """
    text = raw.strip().split('/', 1)[0]
    if '$' in text:
        return None, True
    if text.isdigit() and int(text) <= 65535:
        return int(text), True
    return None, False


def _run_command_port(words: List[str]) -> Optional[str]:
    for idx, word in enumerate(words):
        assigned = PORT_ASSIGN.match(word)
        if assigned:
            return assigned.group(1)
        if PORT_FLAG.match(word) and idx + 1 < len(words):
            return words[idx + 1]
        bound = BIND_ASSIGN.match(word)
        if bound and ':' in bound.group(1):
            return bound.group(1).rsplit(':', 1)[1]
        if BIND_FLAG.match(word) and idx + 1 < len(words) and ':' in words[idx + 1]:
            return words[idx + 1].rsplit(':', 1)[1]
    return None


def recipe_port(recipe: BuildRecipe,
                build_args: Optional[Dict[str, Optional[str]]] = None) -> Tuple[PortFact, Tuple[InvalidPort, ...]]:
    """Listening port declared by the final stage: EXPOSE first, then the run command."""
    final = recipe.final_stage
    if final is None:
        return PortFact(), ()
    variables = stage_variables(recipe, final.index, build_args)
    instructions = recipe.stage_instructions(final.index)
    invalid = []
    fact = None

    for instruction in instructions:
        if instruction.kind is not InstructionKind.EXPOSE:
            continue
        for word in instruction.arguments.split():
            value, valid = _port_value(substitute(word, variables))
            if not valid:
                invalid.append(InvalidPort(raw=word, file=recipe.path, line=instruction.line_no,
                                           context="EXPOSE"))
            elif value is not None and fact is None:
                fact = PortFact(value=value, origin="EXPOSE", raw=word,
                                file=recipe.path, line=instruction.line_no)

    if fact is None:
        commands = [i for i in instructions if i.kind in RUN_COMMAND_KINDS]
        for instruction in reversed(commands):
            words = [substitute(w, variables) for w in split_arguments(instruction.arguments)]
            raw = _run_command_port(words)
            if raw is None:
                continue
            value, _ = _port_value(raw)
            if value is not None:
                fact = PortFact(value=value, origin=f"{instruction.kind.value} port flag", raw=raw,
                                file=recipe.path, line=instruction.line_no)
                break

    if fact is None:
        env_port = variables.get("PORT")
        if env_port:
            value, _ = _port_value(env_port)
            if value is not None:
                fact = PortFact(value=value, origin="ENV PORT", raw=env_port, file=recipe.path)

    return fact or PortFact(), tuple(invalid)


def compose_port(service: ServiceSpec, compose_file: str) -> Tuple[PortFact, Tuple[InvalidPort, ...]]:
    """Listening port implied by the composition: ports, then expose, then PORT env."""
    invalid = tuple(
        InvalidPort(raw=p.raw, file=compose_file, line=p.line_no, context=f"service '{service.name}'")
        for p in service.ports + service.expose if not p.is_valid
    )
    for mapping in service.ports + service.expose:
        if mapping.is_valid:
            return PortFact(value=mapping.target, origin="compose port mapping", raw=mapping.raw,
                            file=compose_file, line=mapping.line_no), invalid
    env_port = service.environment.get("PORT")
    if env_port:
        value, _ = _port_value(env_port)
        if value is not None:
            return PortFact(value=value, origin="compose PORT environment", raw=env_port,
                            file=compose_file, line=service.line_no), invalid
    return PortFact(), invalid


def declared_port(recipe: Optional[BuildRecipe], service: ServiceSpec,
                  compose_file: str) -> Tuple[PortFact, Tuple[InvalidPort, ...]]:
    """First of: EXPOSE, explicit run-command port flag, compose port mapping."""
    invalid: Tuple[InvalidPort, ...] = ()
    if recipe is not None:
        fact, invalid = recipe_port(recipe, dict(service.build_args))
        if fact.known:
            _, compose_invalid = compose_port(service, compose_file)
            return fact, invalid + compose_invalid
    fact, compose_invalid = compose_port(service, compose_file)
    return fact, invalid + compose_invalid


# --- Proxy ----------------------------------------------------------------

def route_targets(proxy: ProxyConfig) -> Tuple[Tuple[str, Optional[int]], ...]:
    return tuple((route.upstream_host, route.upstream_port) for route in proxy.routes)

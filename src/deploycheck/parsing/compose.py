#!/usr/bin/env python3
"""
DEPLOYCHECK COMPOSE PARSER
--------------------------
Loads a multi-service composition file (docker-compose / compose.yaml)
into a ServiceComposition model.

Uses the round-trip loader so that every service and port declaration
keeps its original line number for reporting.

Author: DeployCheck Team
Date: 2026-10-18
"""

import re
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from ruamel.yaml import YAML, YAMLError
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from deploycheck.core.models import PortMapping, ServiceComposition, ServiceSpec, ParseError

# ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:?err}, $VAR ($$ is an escape)
INTERPOLATION_PATTERN = re.compile(
    r'(?<!\$)\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-?+])[^}]*)?\}|([A-Za-z_][A-Za-z0-9_]*))'
)


def _line_of(node: Any, key: Any) -> Optional[int]:
    """1-based line of a key (mapping) or index (sequence), if known."""
    try:
        if isinstance(node, CommentedMap):
            return node.lc.key(key)[0] + 1
        if isinstance(node, CommentedSeq):
            return node.lc.item(key)[0] + 1
    except (AttributeError, KeyError, IndexError, TypeError):
        return None
    return None


def _as_port(value: str) -> Optional[int]:
    """First port of a value or range; None when not a valid port number."""
    value = value.strip()
    if '-' in value:
        value = value.split('-', 1)[0]
    if not value.isdigit():
        return None
    port = int(value)
    return port if 0 <= port <= 65535 else None


def parse_port_spec(raw: Any, line_no: Optional[int] = None) -> PortMapping:
    """
    Parses one short- or long-syntax port entry.
    Never raises: an unparsable entry comes back with target=None.
    """
    if isinstance(raw, bool):
        return PortMapping(raw=str(raw), line_no=line_no)

    if isinstance(raw, int):
        port = raw if 0 <= raw <= 65535 else None
        return PortMapping(raw=str(raw), target=port, line_no=line_no)

    if isinstance(raw, dict):
        target = raw.get("target")
        published = raw.get("published")
        target_port = _as_port(str(target)) if target is not None else None
        published_port = _as_port(str(published)) if published is not None else None
        return PortMapping(
            raw=", ".join(f"{k}: {v}" for k, v in raw.items()),
            target=target_port,
            published=published_port,
            host_ip=raw.get("host_ip"),
            protocol=str(raw.get("protocol", "tcp")),
            line_no=line_no,
        )

    text = str(raw).strip()
    body, _, protocol = text.partition('/')
    protocol = protocol or "tcp"

    host_ip = None
    if body.startswith('['):
        # IPv6 host address: [::1]:8080:80
        end = body.find(']')
        if end == -1:
            return PortMapping(raw=text, line_no=line_no)
        host_ip = body[1:end]
        body = body[end + 2:] if body[end + 1:end + 2] == ':' else body[end + 1:]

    parts = body.split(':')
    published = None
    if len(parts) == 1:
        target_text = parts[0]
    elif len(parts) == 2:
        published_text, target_text = parts
        published = _as_port(published_text) if published_text else None
    elif len(parts) == 3 and host_ip is None:
        host_ip, published_text, target_text = parts
        published = _as_port(published_text) if published_text else None
    else:
        return PortMapping(raw=text, line_no=line_no)

    return PortMapping(
        raw=text,
        target=_as_port(target_text),
        published=published,
        host_ip=host_ip,
        protocol=protocol,
        line_no=line_no,
    )


class ComposeParser:
    """
    Converts composition text into a ServiceComposition.
    Raises ParseError for YAML errors or a structurally invalid document.
    """

    def __init__(self):
        self.yaml = YAML(typ='rt')
        self.yaml.allow_duplicate_keys = False

    def parse(self, text: str, artifact: str = "docker-compose.yml") -> ServiceComposition:
        try:
            data = self.yaml.load(text)
        except YAMLError as e:
            mark = getattr(e, "problem_mark", None) or getattr(e, "context_mark", None)
            line = mark.line + 1 if mark is not None else None
            problem = getattr(e, "problem", None) or str(e).splitlines()[0]
            raise ParseError(artifact, line, f"Invalid YAML: {problem}")

        if not isinstance(data, dict):
            raise ParseError(artifact, None, "Composition file must be a mapping")

        services_node = data.get("services")
        if not isinstance(services_node, dict):
            raise ParseError(artifact, _line_of(data, "services"),
                             "Composition file must declare a 'services' mapping")

        services = {}
        for name, body in services_node.items():
            line = _line_of(services_node, name)
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise ParseError(artifact, line, f"Service '{name}' must be a mapping")
            services[str(name)] = self._parse_service(str(name), body, line, artifact)

        return ServiceComposition(
            path=artifact,
            services=MappingProxyType(services),
            networks=tuple(str(k) for k in (data.get("networks") or {})),
            volumes=tuple(str(k) for k in (data.get("volumes") or {})),
            interpolations=tuple(self._scan_interpolations(text)),
        )

    def _parse_service(self, name: str, body: Dict[str, Any], line: Optional[int],
                       artifact: str) -> ServiceSpec:
        context, recipe, build_args = self._parse_build(name, body.get("build"),
                                                        _line_of(body, "build"), artifact)

        ports_node = body.get("ports") or []
        if not isinstance(ports_node, list):
            raise ParseError(artifact, _line_of(body, "ports"),
                             f"Service '{name}': 'ports' must be a list")
        ports = tuple(parse_port_spec(p, _line_of(ports_node, i)) for i, p in enumerate(ports_node))

        expose_node = body.get("expose") or []
        if not isinstance(expose_node, list):
            raise ParseError(artifact, _line_of(body, "expose"),
                             f"Service '{name}': 'expose' must be a list")
        expose = tuple(parse_port_spec(p, _line_of(expose_node, i)) for i, p in enumerate(expose_node))

        env_files = body.get("env_file") or []
        if isinstance(env_files, (str, dict)):
            env_files = [env_files]
        env_paths = []
        for entry in env_files:
            # Long syntax: {path: ..., required: ...}
            env_paths.append(str(entry.get("path")) if isinstance(entry, dict) else str(entry))

        depends = body.get("depends_on") or []
        depends_on = tuple(str(d) for d in depends)

        return ServiceSpec(
            name=name,
            image=str(body["image"]) if body.get("image") else None,
            build_context=context,
            recipe_path=recipe,
            build_args=MappingProxyType(build_args),
            ports=ports,
            expose=expose,
            environment=MappingProxyType(self._key_values(body.get("environment"))),
            env_files=tuple(env_paths),
            depends_on=depends_on,
            container_name=str(body["container_name"]) if body.get("container_name") else None,
            labels=MappingProxyType({k: v or "" for k, v in self._key_values(body.get("labels")).items()}),
            line_no=line,
        )

    def _parse_build(self, name: str, build: Any, line: Optional[int],
                     artifact: str) -> Tuple[Optional[str], Optional[str], Dict[str, Optional[str]]]:
        if build is None:
            return None, None, {}
        if isinstance(build, str):
            return build, None, {}
        if isinstance(build, dict):
            context = str(build.get("context") or ".")
            dockerfile = build.get("dockerfile")
            return context, str(dockerfile) if dockerfile else None, self._key_values(build.get("args"))
        raise ParseError(artifact, line, f"Service '{name}': 'build' must be a string or mapping")

    def _key_values(self, node: Any) -> Dict[str, Optional[str]]:
        """Normalizes list (`A=1`, `B`) and mapping forms into name -> optional value."""
        result: Dict[str, Optional[str]] = {}
        if isinstance(node, dict):
            for key, value in node.items():
                result[str(key)] = None if value is None else str(value)
        elif isinstance(node, list):
            for item in node:
                key, sep, value = str(item).partition('=')
                result[key.strip()] = value if sep else None
        return result

    def _scan_interpolations(self, text: str) -> List[Tuple[str, bool, int]]:
        found = []
        for line_no, line in enumerate(text.splitlines(), 1):
            if line.lstrip().startswith('#'):
                continue
            for match in INTERPOLATION_PATTERN.finditer(line):
                name = match.group(1) or match.group(3)
                has_default = bool(match.group(2)) and match.group(2).lstrip(':') in ("-", "+")
                found.append((name, has_default, line_no))
        return found


def parse_compose(text: str, artifact: str = "docker-compose.yml") -> ServiceComposition:
    return ComposeParser().parse(text, artifact)

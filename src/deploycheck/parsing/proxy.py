#!/usr/bin/env python3
"""
DEPLOYCHECK PROXY PARSER - Route Mapper
---------------------------------------
Reads a reverse-proxy configuration and flattens it into RouteBlocks:
one entry per (site, matcher, upstream) combination.

Two dialects are understood:
  * Caddyfile: site blocks, handle/route sub-blocks, named matchers,
    reverse_proxy with inline upstreams or `to` sub-directives.
  * nginx: upstream pools, server/location blocks and proxy_pass.

Author: DeployCheck Team
Date: 2026-10-18
"""

import re
from typing import List, Optional, Tuple, Dict

from deploycheck.core.models import ProxyConfig, RouteBlock, ParseError

NGINX_HINT = re.compile(r'\bproxy_pass\b|^\s*(?:http|events|upstream\s+\S+)\s*\{', re.MULTILINE)
CADDY_PLACEHOLDER = re.compile(r'\{\$([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}')
SCHEME_PORTS = {"http": 80, "https": 443, "h2c": 80, "ws": 80, "wss": 443}
BLOCK_DIRECTIVES = ("handle", "handle_path", "route", "handle_errors")


def find_comment_split(text: str) -> int:
    """Index of the first real '#' comment marker, protecting quoted hashes."""
    in_double_quote = in_single_quote = escaped = False
    for i, char in enumerate(text):
        if escaped:
            escaped = False
            continue
        if char == '\\':
            escaped = True
            continue
        if char == '"' and not in_single_quote:
            in_double_quote = not in_double_quote
        elif char == "'" and not in_double_quote:
            in_single_quote = not in_single_quote
        if char == '#' and not in_double_quote and not in_single_quote:
            if i == 0 or text[i - 1].isspace():
                return i
    return -1


def _strip_comment(line: str) -> str:
    idx = find_comment_split(line)
    return (line[:idx] if idx != -1 else line).strip()


def split_upstream(target: str) -> Tuple[str, Optional[int]]:
    """
    Splits an upstream address into (host, port).
    `backend:5000`, `http://backend:5000/x`, `:5000`, `backend` (scheme default).
    The port is None when it cannot be determined (placeholders, junk).
    """
    text = CADDY_PLACEHOLDER.sub(lambda m: m.group(2) if m.group(2) is not None else "$" + m.group(1),
                                 target.strip())
    default_port = 80
    if '://' in text:
        scheme, _, text = text.partition('://')
        default_port = SCHEME_PORTS.get(scheme.lower(), 80)
    text = text.split('/', 1)[0]

    if text.startswith('['):
        host, _, rest = text[1:].partition(']')
        port_text = rest[1:] if rest.startswith(':') else ""
    elif text.count(':') == 1:
        host, port_text = text.split(':')
    else:
        host, port_text = text, ""

    host = host or "localhost"
    if not port_text:
        return host, default_port
    if port_text.isdigit():
        return host, int(port_text)
    return host, None


class CaddyfileParser:
    """Flattens Caddyfile site blocks into routes."""

    def parse(self, text: str, artifact: str) -> List[RouteBlock]:
        routes: List[RouteBlock] = []
        # Each frame: (kind, label, opened_at_line)
        stack: List[Tuple[str, str, int]] = []
        bare_site: Optional[str] = None
        pending_proxy: Optional[Tuple[str, Optional[str], int]] = None  # site, matcher, line
        pending_found_upstream = False
        seen_block = False

        for line_no, raw_line in enumerate(text.splitlines(), 1):
            line = _strip_comment(raw_line)
            if not line:
                continue

            closes = line.startswith('}')
            if closes:
                if not stack:
                    raise ParseError(artifact, line_no, "Unexpected '}' without matching '{'")
                kind, _, _ = stack.pop()
                if kind == "proxy" and pending_proxy and not pending_found_upstream:
                    raise ParseError(artifact, pending_proxy[2], "reverse_proxy block declares no upstream")
                if kind == "proxy":
                    pending_proxy = None
                line = line[1:].strip()
                if not line:
                    continue

            opens = line.endswith('{')
            body = line[:-1].strip() if opens else line

            if not stack:
                if opens:
                    # A leading bare '{' is the global options block
                    if not body and not seen_block and bare_site is None:
                        kind = "global"
                    elif body.startswith('('):
                        kind = "snippet"
                    else:
                        kind = "site"
                    stack.append((kind, body or "", line_no))
                    seen_block = True
                    bare_site = None
                elif bare_site is None:
                    bare_site = body
                else:
                    self._directive(body, bare_site, None, line_no, routes, artifact)
                continue

            site = self._current_site(stack)
            if site is None:
                # Inside global options or a snippet: nothing routable
                if opens:
                    stack.append(("opaque", body, line_no))
                continue

            tokens = body.split()
            directive = tokens[0] if tokens else ""

            if stack[-1][0] == "proxy" and directive == "to":
                for upstream in tokens[1:]:
                    self._add_route(routes, site, pending_proxy[1], upstream, body, line_no)
                pending_found_upstream = True
                continue

            if directive == "reverse_proxy":
                matcher, upstreams = self._proxy_args(tokens[1:])
                matcher = matcher or self._current_matcher(stack)
                for upstream in upstreams:
                    self._add_route(routes, site, matcher, upstream, body, line_no)
                if opens:
                    stack.append(("proxy", site, line_no))
                    pending_proxy = (site, matcher, line_no)
                    pending_found_upstream = bool(upstreams)
                elif not upstreams:
                    raise ParseError(artifact, line_no, "reverse_proxy declares no upstream")
                continue

            if opens:
                if directive in BLOCK_DIRECTIVES:
                    matcher = tokens[1] if len(tokens) > 1 else None
                    stack.append(("handle", matcher or "", line_no))
                else:
                    stack.append(("opaque", body, line_no))

        if stack:
            raise ParseError(artifact, stack[-1][2], "Block opened here is never closed")

        return routes

    def _current_site(self, stack) -> Optional[str]:
        kind, label, _ = stack[0]
        return label if kind == "site" else None

    def _current_matcher(self, stack) -> Optional[str]:
        for kind, label, _ in reversed(stack):
            if kind == "handle" and label:
                return label
        return None

    def _proxy_args(self, args: List[str]) -> Tuple[Optional[str], List[str]]:
        if args and (args[0].startswith('/') or args[0].startswith('@') or args[0] == '*'):
            return args[0], args[1:]
        return None, args

    def _directive(self, body: str, site: str, matcher: Optional[str], line_no: int,
                   routes: List[RouteBlock], artifact: str):
        tokens = body.split()
        if tokens and tokens[0] == "reverse_proxy":
            matcher, upstreams = self._proxy_args(tokens[1:])
            if not upstreams:
                raise ParseError(artifact, line_no, "reverse_proxy declares no upstream")
            for upstream in upstreams:
                self._add_route(routes, site, matcher, upstream, body, line_no)

    def _add_route(self, routes: List[RouteBlock], site: str, matcher: Optional[str], upstream: str,
                   raw: str, line_no: int):
        host, port = split_upstream(upstream)
        if '$' in host:
            return  # {$VAR} without a default: upstream is not statically known
        routes.append(RouteBlock(site=site, upstream_host=host, upstream_port=port,
                                 matcher=matcher, raw=raw, line_no=line_no))


class NginxParser:
    """Flattens nginx server/location/proxy_pass declarations into routes."""

    def _statements(self, text: str, artifact: str) -> List[Tuple[str, str, int]]:
        """
        Tokenizes into (statement, terminator, line) where terminator is one
        of ';', '{' or '}'.
        """
        statements = []
        buffer = []
        start_line = None
        for line_no, raw_line in enumerate(text.splitlines(), 1):
            line = _strip_comment(raw_line)
            in_quote = None
            for char in line:
                if in_quote:
                    buffer.append(char)
                    if char == in_quote:
                        in_quote = None
                    continue
                if char in ('"', "'"):
                    in_quote = char
                    buffer.append(char)
                    continue
                if char in ';{}':
                    statements.append(("".join(buffer).strip(), char, start_line or line_no))
                    buffer = []
                    start_line = None
                    continue
                if not buffer and char.isspace():
                    continue
                if start_line is None:
                    start_line = line_no
                buffer.append(char)
            if buffer:
                buffer.append(' ')
        if "".join(buffer).strip():
            raise ParseError(artifact, start_line, "Statement is missing a terminating ';'")
        return statements

    def parse(self, text: str, artifact: str) -> List[RouteBlock]:
        upstreams: Dict[str, List[str]] = {}
        pending: List[Tuple[str, Optional[str], str, str, int]] = []  # site, matcher, target, raw, line
        stack: List[Tuple[str, List[str], int]] = []
        server_state: Dict[str, List[str]] = {}

        for statement, terminator, line_no in self._statements(text, artifact):
            words = statement.split()
            if terminator == '{':
                stack.append((words[0] if words else "", words[1:], line_no))
                if words and words[0] == "server" and not any(f[0] == "upstream" for f in stack[:-1]):
                    server_state = {"listen": [], "server_name": [], "proxies": []}
                continue

            if terminator == '}':
                if statement:
                    raise ParseError(artifact, line_no, "Statement is missing a terminating ';'")
                if not stack:
                    raise ParseError(artifact, line_no, "Unexpected '}' without matching '{'")
                kind, _, _ = stack.pop()
                if kind == "server" and server_state:
                    site = self._site_label(server_state)
                    for matcher, target, raw, at in server_state["proxies"]:
                        pending.append((site, matcher, target, raw, at))
                    server_state = {}
                continue

            if not words:
                continue
            frame = stack[-1] if stack else ("", [], 0)
            if frame[0] == "upstream" and words[0] == "server" and len(words) > 1:
                upstreams.setdefault(frame[1][0] if frame[1] else "", []).append(words[1])
            elif words[0] in ("listen", "server_name") and server_state:
                server_state[words[0]].extend(words[1:])
            elif words[0] == "proxy_pass" and len(words) > 1:
                location = next((f for f in reversed(stack) if f[0] == "location"), None)
                matcher = " ".join(location[1]) if location else None
                if server_state:
                    server_state["proxies"].append((matcher, words[1], statement, line_no))
                else:
                    pending.append(("", matcher, words[1], statement, line_no))

        if stack:
            raise ParseError(artifact, stack[-1][2], "Block opened here is never closed")

        routes = []
        for site, matcher, target, raw, line_no in pending:
            if '$' in target.split('://', 1)[-1].split('/', 1)[0]:
                continue  # Runtime variable: upstream is not statically known
            host, port = split_upstream(target)
            explicit_port = target.split('://', 1)[-1].split('/', 1)[0].count(':') > 0
            if host in upstreams and not explicit_port:
                for server in upstreams[host]:
                    s_host, s_port = split_upstream(server)
                    routes.append(RouteBlock(site=site, upstream_host=s_host, upstream_port=s_port,
                                             matcher=matcher, raw=raw, line_no=line_no))
                continue
            routes.append(RouteBlock(site=site, upstream_host=host, upstream_port=port,
                                     matcher=matcher, raw=raw, line_no=line_no))
        return routes

    def _site_label(self, state: Dict[str, List[str]]) -> str:
        names = [n for n in state["server_name"] if n != "_"]
        if names:
            return names[0]
        if state["listen"]:
            return ":" + state["listen"][0].rsplit(':', 1)[-1]
        return ""


def detect_dialect(text: str, artifact: str = "") -> str:
    name = artifact.lower()
    if "caddy" in name:
        return "caddy"
    if "nginx" in name or name.endswith(".conf") or NGINX_HINT.search(text):
        return "nginx"
    return "caddy"


def parse_proxy(text: str, artifact: str = "Caddyfile") -> ProxyConfig:
    text = text.lstrip('\ufeff').replace('\r\n', '\n')
    dialect = detect_dialect(text, artifact)
    parser = NginxParser() if dialect == "nginx" else CaddyfileParser()
    return ProxyConfig(path=artifact, dialect=dialect, routes=tuple(parser.parse(text, artifact)))

#!/usr/bin/env python3
"""
DEPLOYCHECK ENV FILE PARSER
---------------------------
Reads `NAME=value` documents (.env, .env.example, compose env_file
targets) into an EnvFile model.

Author: DeployCheck Team
Date: 2026-10-18
"""

import re
from types import MappingProxyType

from deploycheck.core.models import EnvFile, ParseError

ENV_LINE = re.compile(r'^(?:export\s+)?([A-Za-z_][A-Za-z0-9_.-]*)\s*=\s*(.*)$')


def _closing_quote(value: str) -> int:
    """Index of the quote closing `value`, or -1 when it continues on later lines."""
    quote = value[0]
    end = value.find(quote, 1)
    while end != -1:
        rest = value[end + 1:].strip()
        if not rest or rest.startswith('#'):
            return end
        end = value.find(quote, end + 1)
    return -1


def _unquote(value: str) -> str:
    value = value.strip()
    if value[:1] in ('"', "'"):
        end = _closing_quote(value)
        # An unterminated value keeps only its first line
        return value[1:end] if end != -1 else value[1:]
    # Unquoted values may carry a trailing comment
    hash_idx = value.find(' #')
    return value[:hash_idx].rstrip() if hash_idx != -1 else value


def parse_env_file(text: str, artifact: str = ".env.example") -> EnvFile:
    entries = {}
    in_multiline = None

    for line_no, raw_line in enumerate(text.lstrip('\ufeff').splitlines(), 1):
        if in_multiline:
            if raw_line.rstrip().endswith(in_multiline):
                in_multiline = None
            continue

        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        match = ENV_LINE.match(line)
        if not match:
            raise ParseError(artifact, line_no, f"Expected NAME=value, found '{line}'")

        name, value = match.group(1), match.group(2).strip()
        # Multi-line quoted value: skip continuation lines until the closing quote
        if value[:1] in ('"', "'") and _closing_quote(value) == -1:
            in_multiline = value[0]
        entries[name] = _unquote(value)

    if in_multiline:
        raise ParseError(artifact, None, "Unterminated quoted value")

    return EnvFile(path=artifact, entries=MappingProxyType(entries))

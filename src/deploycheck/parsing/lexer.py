#!/usr/bin/env python3
"""
DEPLOYCHECK RECIPE LEXER - Instruction Sharder
----------------------------------------------
Decomposes a container build recipe (Dockerfile) into ordered
BuildInstruction models, tracking build stages as it goes.

Handles the parts of the format that trip up naive line splitting:
escape-character directives, backslash continuations, comment lines
inside continuations, and heredoc bodies.

Author: DeployCheck Team
Date: 2026-10-18
"""

import json
import re
import shlex
from types import MappingProxyType
from typing import List, Tuple, Optional, Dict

from deploycheck.core.models import (
    BuildInstruction, BuildRecipe, BuildStage, InstructionKind, ParseError
)

DIRECTIVE_PATTERN = re.compile(r'^#\s*([a-zA-Z][a-zA-Z0-9_-]*)\s*=\s*(.+?)\s*$')
HEREDOC_PATTERN = re.compile(r'<<(-?)(["\']?)([A-Za-z_][A-Za-z0-9_]*)\2')
FLAG_PATTERN = re.compile(r'^--([a-zA-Z][a-zA-Z0-9-]*)(?:=(\S*))?$')


class RecipeLexer:
    """
    Turns recipe text into a BuildRecipe.
    All-or-nothing: either a complete recipe is returned or ParseError is raised.
    """

    def __init__(self):
        self.escape_char = "\\"

    def _clean_artifacts(self, text: str) -> str:
        """Removes the UTF-8 BOM and standardizes line endings."""
        text = text.lstrip('\ufeff')
        return text.replace('\r\n', '\n').replace('\r', '\n')

    def _read_directives(self, lines: List[str]) -> int:
        """
        Consumes parser directives at the top of the file.
        Returns the index of the first line that is not a directive.
        """
        self.escape_char = "\\"
        for idx, line in enumerate(lines):
            match = DIRECTIVE_PATTERN.match(line.strip())
            if not match:
                return idx
            if match.group(1).lower() == "escape":
                value = match.group(2)
                if value not in ("\\", "`"):
                    raise ParseError("recipe", idx + 1, f"Invalid escape directive '{value}'")
                self.escape_char = value
        return len(lines)

    def _is_comment(self, line: str) -> bool:
        return line.lstrip().startswith('#')

    def _ends_with_escape(self, line: str) -> bool:
        stripped = line.rstrip()
        return stripped.endswith(self.escape_char)

    def _logical_lines(self, lines: List[str], start: int, artifact: str) -> List[Tuple[int, str]]:
        """
        Joins continuation lines and heredoc bodies into logical instructions.
        Returns (first line number, joined text) pairs.
        """
        logical = []
        idx = start
        total = len(lines)

        while idx < total:
            line = lines[idx].replace('\t', '    ')
            if not line.strip() or self._is_comment(line):
                idx += 1
                continue

            first_line_no = idx + 1
            parts = []
            while True:
                if self._ends_with_escape(line):
                    parts.append(line.rstrip()[:-1].strip())
                    idx += 1
                    # Blank and comment lines inside a continuation are dropped
                    while idx < total and (not lines[idx].strip() or self._is_comment(lines[idx])):
                        idx += 1
                    if idx >= total:
                        raise ParseError(artifact, first_line_no,
                                         "Line continuation reaches end of file")
                    line = lines[idx].replace('\t', '    ')
                    continue
                parts.append(line.strip())
                idx += 1
                break

            text = " ".join(p for p in parts if p)

            # Heredoc bodies travel with their instruction
            for match in HEREDOC_PATTERN.finditer(text):
                strip_tabs = match.group(1) == "-"
                terminator = match.group(3)
                body = []
                while idx < total:
                    candidate = lines[idx].lstrip('\t') if strip_tabs else lines[idx]
                    if candidate.rstrip() == terminator:
                        break
                    body.append(lines[idx])
                    idx += 1
                else:
                    raise ParseError(artifact, first_line_no,
                                     f"Unterminated heredoc '{terminator}'")
                idx += 1
                text = text + "\n" + "\n".join(body)

            logical.append((first_line_no, text))

        return logical

    def _split_flags(self, arguments: str) -> Tuple[Dict[str, str], str]:
        """Peels leading --flag[=value] options off an instruction."""
        flags = {}
        rest = arguments
        while rest.startswith('--'):
            token, _, remainder = rest.partition(' ')
            match = FLAG_PATTERN.match(token)
            if not match:
                break
            flags[match.group(1).lower()] = match.group(2) if match.group(2) is not None else ""
            rest = remainder.lstrip()
        return flags, rest

    def tokenize(self, text: str, artifact: str = "recipe") -> BuildRecipe:
        """
        Primary interface: decomposes recipe text into a BuildRecipe.
        """
        lines = self._clean_artifacts(text).split('\n')
        start = self._read_directives(lines)
        logical = self._logical_lines(lines, start, artifact)

        instructions = []
        stages = []
        stage_index = -1

        for line_no, content in logical:
            keyword, _, arguments = content.partition(' ')
            if '\n' in keyword:
                keyword, _, tail = keyword.partition('\n')
                arguments = tail + (" " + arguments if arguments else "")
            try:
                kind = InstructionKind(keyword.upper())
            except ValueError:
                raise ParseError(artifact, line_no, f"Unknown instruction '{keyword}'")

            arguments = arguments.strip()
            if kind is not InstructionKind.RUN or not arguments.startswith('['):
                flags, arguments = self._split_flags(arguments)
            else:
                flags = {}
            if HEREDOC_PATTERN.search(arguments.split('\n', 1)[0]):
                flags["heredoc"] = "1"

            if kind is InstructionKind.FROM:
                stage_index += 1
                stages.append(self._parse_stage(stage_index, arguments, line_no, artifact))
            elif stage_index < 0 and kind is not InstructionKind.ARG:
                raise ParseError(artifact, line_no,
                                 f"'{kind.value}' appears before the first FROM instruction")

            instructions.append(BuildInstruction(
                kind=kind,
                arguments=arguments,
                stage_index=stage_index,
                line_no=line_no,
                flags=MappingProxyType(flags),
                raw=content,
            ))

        if not stages:
            raise ParseError(artifact, None, "Recipe has no FROM instruction")

        return BuildRecipe(path=artifact, instructions=tuple(instructions), stages=tuple(stages))

    def _parse_stage(self, index: int, arguments: str, line_no: int, artifact: str) -> BuildStage:
        parts = arguments.split()
        if not parts:
            raise ParseError(artifact, line_no, "FROM requires a base image")
        name = None
        if len(parts) >= 3 and parts[1].lower() == "as":
            name = parts[2]
        elif len(parts) != 1:
            raise ParseError(artifact, line_no, f"Malformed FROM instruction '{arguments}'")
        return BuildStage(index=index, base_image=parts[0], name=name, line_no=line_no)


def split_arguments(arguments: str) -> List[str]:
    """
    Splits instruction arguments into words, honouring the JSON exec form.
    Never raises: malformed quoting falls back to whitespace splitting.
    """
    text = arguments.strip()
    if text.startswith('['):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                return [str(p) for p in parsed]
        except ValueError:
            pass
    try:
        return shlex.split(text, posix=True)
    except ValueError:
        return text.split()


def parse_recipe(text: str, artifact: str = "Dockerfile") -> BuildRecipe:
    return RecipeLexer().tokenize(text, artifact)

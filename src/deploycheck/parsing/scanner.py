#!/usr/bin/env python3
"""
DEPLOYCHECK SCANNER - The Archeologist
--------------------------------------
Mines environment-variable references out of application source text.

Each ecosystem reads its environment differently, so matching is done by
pluggable EnvRecognizers: a name, a regex whose first group captures the
variable name, and the file extensions it applies to. New ecosystems only
need a new recognizer.

Author: DeployCheck Team
Date: 2026-10-18
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from deploycheck.core.models import EnvUsage, ConfigError

logger = logging.getLogger("deploycheck.scanner")

JS_EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".mts", ".cts", ".vue", ".svelte", ".astro")
NAME = r'([A-Z_][A-Z0-9_]*)'


@dataclass(frozen=True)
class EnvRecognizer:
    name: str
    pattern: "re.Pattern"
    extensions: Tuple[str, ...]

    @classmethod
    def build(cls, name: str, pattern: str, extensions: Sequence[str]) -> "EnvRecognizer":
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"Recognizer '{name}' has an invalid pattern: {e}")
        if compiled.groups < 1:
            raise ConfigError(f"Recognizer '{name}' must capture the variable name in a group")
        exts = tuple(e if e.startswith('.') else f".{e}" for e in extensions)
        return cls(name=name, pattern=compiled, extensions=exts)

    def applies_to(self, path: str) -> bool:
        return path.lower().endswith(self.extensions)


DEFAULT_RECOGNIZERS: Tuple[EnvRecognizer, ...] = (
    EnvRecognizer.build("process.env", r'process\.env\.' + NAME + r'\b', JS_EXTENSIONS),
    EnvRecognizer.build("process.env[]", r'process\.env\[\s*[\'"`]' + NAME + r'[\'"`]\s*\]', JS_EXTENSIONS),
    EnvRecognizer.build("import.meta.env", r'import\.meta\.env\.' + NAME + r'\b', JS_EXTENSIONS),
    EnvRecognizer.build("Deno.env", r'Deno\.env\.get\(\s*[\'"]' + NAME + r'[\'"]', JS_EXTENSIONS),
    EnvRecognizer.build("os.environ[]", r'os\.environ\[\s*[\'"]' + NAME + r'[\'"]\s*\]', (".py",)),
    EnvRecognizer.build("os.environ.get", r'os\.environ\.(?:get|setdefault|pop)\(\s*[\'"]' + NAME + r'[\'"]', (".py",)),
    EnvRecognizer.build("os.getenv", r'os\.getenv\(\s*[\'"]' + NAME + r'[\'"]', (".py",)),
    EnvRecognizer.build("Getenv", r'os\.(?:Getenv|LookupEnv)\(\s*"' + NAME + r'"', (".go",)),
    EnvRecognizer.build("ENV[]", r'ENV(?:\.fetch\(|\[)\s*[\'"]' + NAME + r'[\'"]', (".rb", ".erb", ".rake")),
    EnvRecognizer.build("env::var", r'env::var(?:_os)?\(\s*"' + NAME + r'"', (".rs",)),
    EnvRecognizer.build("System.getenv", r'System\.getenv\(\s*"' + NAME + r'"', (".java", ".kt", ".scala")),
    EnvRecognizer.build("getenv", r'(?<![\w.])getenv\(\s*[\'"]' + NAME + r'[\'"]', (".php",)),
    EnvRecognizer.build("$_ENV", r'\$_(?:ENV|SERVER)\[\s*[\'"]' + NAME + r'[\'"]\s*\]', (".php",)),
)


class EnvScanner:
    """
    Walks source trees and reports every recognized environment reference.
    Read-only: files are opened for reading and never modified.
    """

    def __init__(self, recognizers: Optional[Iterable[EnvRecognizer]] = None,
                 exclude_dirs: Iterable[str] = (), max_file_bytes: int = 1_000_000):
        self.recognizers: Tuple[EnvRecognizer, ...] = tuple(recognizers or DEFAULT_RECOGNIZERS)
        self.exclude_dirs = frozenset(exclude_dirs)
        self.max_file_bytes = max_file_bytes

    @property
    def extensions(self) -> Tuple[str, ...]:
        exts = []
        for recognizer in self.recognizers:
            exts.extend(e for e in recognizer.extensions if e not in exts)
        return tuple(exts)

    def scan_text(self, text: str, path: str) -> List[EnvUsage]:
        """Processes one file's text into EnvUsage records, in line order."""
        active = [r for r in self.recognizers if r.applies_to(path)]
        if not active:
            return []

        usages = []
        for line_no, line in enumerate(text.splitlines(), 1):
            for recognizer in active:
                for match in recognizer.pattern.finditer(line):
                    usages.append(EnvUsage(name=match.group(1), path=path,
                                           line_no=line_no, recognizer=recognizer.name))
        return usages

    def discover(self, root: Path) -> List[Path]:
        """Source files under root, sorted, skipping excluded dirs and symlinks."""
        if not root.is_dir():
            return []
        extensions = self.extensions
        found = []
        for dirpath, dirnames, filenames in os.walk(root):
            # Prune in place so os.walk never descends into excluded trees
            dirnames[:] = sorted(d for d in dirnames if d not in self.exclude_dirs)
            for filename in filenames:
                if filename.lower().endswith(extensions):
                    candidate = Path(dirpath) / filename
                    if candidate.is_file() and not candidate.is_symlink():
                        found.append(candidate)
        return sorted(found)

    def scan_tree(self, root: Path,
                  relative_to: Optional[Path] = None) -> Tuple[List[EnvUsage], List[Tuple[str, str]]]:
        """
        Scans every source file under root.
        Returns the usages plus (path, error) pairs for files that could not be read.
        """
        base = relative_to or root
        usages = []
        unreadable = []
        for file_path in self.discover(root):
            try:
                display = file_path.relative_to(base).as_posix()
            except ValueError:
                display = str(file_path)
            try:
                if file_path.stat().st_size > self.max_file_bytes:
                    logger.debug(f"Skipping oversized source file {file_path}")
                    continue
                text = file_path.read_text(encoding='utf-8', errors='replace')
            except OSError as e:
                logger.warning(f"Unable to read {file_path}: {e}")
                unreadable.append((display, str(e)))
                continue
            usages.extend(self.scan_text(text, display))
        return usages, unreadable

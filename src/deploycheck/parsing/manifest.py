#!/usr/bin/env python3
"""
DEPLOYCHECK DEPENDENCY MANIFEST PARSER
--------------------------------------
Loads package.json into a DependencyManifest. Only dependency names and
scripts matter to the rules; versions are ignored.

Author: DeployCheck Team
Date: 2026-10-18
"""

import json
from types import MappingProxyType

from deploycheck.core.models import DependencyManifest, ParseError


def parse_manifest(text: str, artifact: str = "package.json") -> DependencyManifest:
    try:
        data = json.loads(text.lstrip('\ufeff'))
    except json.JSONDecodeError as e:
        raise ParseError(artifact, e.lineno, f"Invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        raise ParseError(artifact, None, "Manifest must be a JSON object")

    def names(key):
        section = data.get(key) or {}
        return tuple(section.keys()) if isinstance(section, dict) else ()

    scripts = data.get("scripts") or {}
    if not isinstance(scripts, dict):
        scripts = {}

    return DependencyManifest(
        path=artifact,
        dependencies=names("dependencies"),
        dev_dependencies=names("devDependencies"),
        scripts=MappingProxyType({str(k): str(v) for k, v in scripts.items()}),
    )

#!/usr/bin/env python3
"""
DEPLOYCHECK CONFIGURATION
-------------------------
Checker defaults and the optional per-project `.deploycheck.yaml`
override file.

Example:

    compose_files: [deploy/compose.yaml]
    proxy_files: [deploy/Caddyfile]
    internal_services: [worker]
    build_tools: [my-bundler]
    recognizers:
      - name: settings.env
        pattern: "settings\\.env\\(['\\"]([A-Z_][A-Z0-9_]*)"
        extensions: [.py]

Author: DeployCheck Team
Date: 2026-10-18
"""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ruamel.yaml import YAML, YAMLError

from deploycheck.core.models import ConfigError
from deploycheck.parsing.scanner import DEFAULT_RECOGNIZERS, EnvRecognizer

logger = logging.getLogger("deploycheck.config")

CONFIG_FILENAME = ".deploycheck.yaml"


@dataclass(frozen=True)
class CheckerConfig:
    compose_files: Tuple[str, ...] = (
        "docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml",
    )
    proxy_files: Tuple[str, ...] = (
        "Caddyfile", "caddy/Caddyfile", "docker/Caddyfile",
        "nginx.conf", "nginx/nginx.conf", "nginx/default.conf", "docker/nginx.conf",
    )
    env_example: str = ".env.example"
    env_file: str = ".env"
    default_recipe: str = "Dockerfile"
    manifest_file: str = "package.json"
    exclude_dirs: Tuple[str, ...] = (
        "node_modules", ".git", "dist", "build", ".next", ".nuxt", ".svelte-kit",
        ".venv", "venv", "__pycache__", "coverage", ".cache", "target", "vendor",
    )
    # Services whose image name contains one of these never need a public route
    internal_images: Tuple[str, ...] = (
        "postgres", "mysql", "mariadb", "mongo", "redis", "valkey", "memcached",
        "rabbitmq", "elasticsearch", "opensearch", "minio", "clickhouse",
    )
    proxy_images: Tuple[str, ...] = ("caddy", "nginx", "traefik", "haproxy", "envoy")
    internal_services: Tuple[str, ...] = ()
    external_services: Tuple[str, ...] = ()
    # Dev-only tooling that a build step needs (type-checkers, bundlers)
    build_tools: Tuple[str, ...] = (
        "typescript", "vue-tsc", "svelte-check", "vite", "webpack", "webpack-cli",
        "esbuild", "rollup", "parcel", "tsup", "swc", "@swc/core", "@babel/core",
        "@babel/cli", "@vitejs/plugin-react", "@vitejs/plugin-vue",
        "@angular/cli", "@angular-devkit/build-angular", "@sveltejs/kit",
        "next", "nuxt", "react-scripts", "tailwindcss", "postcss",
    )
    # Variables supplied by the runtime or the bundler, never by the deployment
    ignored_env: Tuple[str, ...] = (
        "NODE_ENV", "PATH", "HOME", "PWD", "HOSTNAME", "USER", "SHELL", "TERM", "LANG", "TZ", "CI",
        "MODE", "DEV", "PROD", "SSR", "BASE_URL",
    )
    recognizers: Tuple[EnvRecognizer, ...] = field(default=DEFAULT_RECOGNIZERS)
    max_file_bytes: int = 1_000_000

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], source: str = CONFIG_FILENAME) -> "CheckerConfig":
        """Builds a config from defaults overlaid with the given mapping."""
        if not isinstance(data, dict):
            raise ConfigError(f"{source}: top level must be a mapping")

        known = {f.name for f in fields(cls)}
        updates: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                raise ConfigError(f"{source}: unknown setting '{key}'")
            if key == "recognizers":
                updates[key] = DEFAULT_RECOGNIZERS + cls._load_recognizers(value, source)
            elif key == "max_file_bytes":
                if not isinstance(value, int) or value <= 0:
                    raise ConfigError(f"{source}: 'max_file_bytes' must be a positive integer")
                updates[key] = value
            elif key in ("env_example", "env_file", "default_recipe", "manifest_file"):
                if not isinstance(value, str) or not value:
                    raise ConfigError(f"{source}: '{key}' must be a non-empty string")
                updates[key] = value
            else:
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                    raise ConfigError(f"{source}: '{key}' must be a list of strings")
                updates[key] = tuple(value)

        return replace(cls(), **updates)

    @staticmethod
    def _load_recognizers(value: Any, source: str) -> Tuple[EnvRecognizer, ...]:
        if not isinstance(value, list):
            raise ConfigError(f"{source}: 'recognizers' must be a list")
        loaded = []
        for entry in value:
            if not isinstance(entry, dict) or not {"name", "pattern"} <= set(entry):
                raise ConfigError(f"{source}: each recognizer needs 'name' and 'pattern'")
            extensions = entry.get("extensions") or []
            if isinstance(extensions, str):
                extensions = [extensions]
            if not extensions:
                raise ConfigError(f"{source}: recognizer '{entry['name']}' needs 'extensions'")
            loaded.append(EnvRecognizer.build(str(entry["name"]), str(entry["pattern"]),
                                              [str(e) for e in extensions]))
        return tuple(loaded)

    @classmethod
    def load(cls, path: Path) -> "CheckerConfig":
        """Reads a YAML config file. Raises ConfigError on any problem."""
        try:
            text = path.read_text(encoding='utf-8-sig')
        except OSError as e:
            raise ConfigError(f"Unable to read config {path}: {e}")
        try:
            data = YAML(typ='safe').load(text)
        except YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded checker config from {path}")
        return cls.from_mapping(data or {}, source=str(path))

    @classmethod
    def discover(cls, project_root: Path, explicit: Optional[Path] = None) -> "CheckerConfig":
        """Explicit config path, else `.deploycheck.yaml` in the project, else defaults."""
        if explicit is not None:
            return cls.load(explicit)
        candidate = project_root / CONFIG_FILENAME
        if candidate.is_file():
            return cls.load(candidate)
        return cls()

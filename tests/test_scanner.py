"""
DEPLOYCHECK SCANNER & CONFIG SUITE
----------------------------------
Environment-reference recognizers across ecosystems, source tree
discovery, and the `.deploycheck.yaml` override layer.

Author: DeployCheck Team
Date: 2026-10-18
"""

import os

import pytest

from deploycheck.core.config import CheckerConfig
from deploycheck.core.models import ConfigError
from deploycheck.parsing.scanner import DEFAULT_RECOGNIZERS, EnvRecognizer, EnvScanner


@pytest.mark.parametrize("path, line, expected", [
    ("src/api.ts", "const url = process.env.API_URL;", "API_URL"),
    ("src/api.js", "const key = process.env['SECRET_KEY'];", "SECRET_KEY"),
    ("src/main.tsx", "fetch(import.meta.env.VITE_API_URL)", "VITE_API_URL"),
    ("server.ts", 'const port = Deno.env.get("APP_PORT");', "APP_PORT"),
    ("app/main.py", 'model = os.getenv("GEMINI_MODEL", "gemini-pro")', "GEMINI_MODEL"),
    ("app/db.py", "url = os.environ['DATABASE_URL']", "DATABASE_URL"),
    ("app/cache.py", 'url = os.environ.get("REDIS_URL")', "REDIS_URL"),
    ("cmd/main.go", 'port := os.Getenv("PORT")', "PORT"),
    ("config/app.rb", "key = ENV.fetch('RAILS_MASTER_KEY')", "RAILS_MASTER_KEY"),
    ("src/main.rs", 'let level = env::var("RUST_LOG");', "RUST_LOG"),
    ("src/App.java", 'String url = System.getenv("JDBC_URL");', "JDBC_URL"),
    ("index.php", "$key = getenv('APP_KEY');", "APP_KEY"),
    ("index.php", "$key = $_ENV['APP_SECRET'];", "APP_SECRET"),
])
def test_default_recognizers(path, line, expected):
    usages = EnvScanner().scan_text(line, path)
    assert [u.name for u in usages] == [expected]
    assert usages[0].path == path
    assert usages[0].line_no == 1


def test_recognizers_respect_extensions():
    scanner = EnvScanner()
    # A Python idiom inside a JavaScript file is not a Python reference
    assert scanner.scan_text('os.getenv("NOT_HERE")', "src/index.js") == []
    assert scanner.scan_text("process.env.API_URL", "README.md") == []
    # Lower-case names are not environment variables by convention
    assert scanner.scan_text("process.env.apiUrl", "src/index.js") == []


def test_scan_text_line_numbers():
    text = "import os\n\nA = os.getenv('FIRST')\nB = os.environ['SECOND']\n"
    usages = EnvScanner().scan_text(text, "settings.py")
    assert [(u.name, u.line_no) for u in usages] == [("FIRST", 3), ("SECOND", 4)]


def test_scan_tree_skips_excluded_dirs(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.js").write_text("process.env.API_URL\n")
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "index.js").write_text("process.env.VENDOR_ONLY\n")
    if os.name != 'nt':
        (tmp_path / "linked.js").symlink_to(tmp_path / "src" / "index.js")

    scanner = EnvScanner(exclude_dirs=("node_modules",))
    usages, unreadable = scanner.scan_tree(tmp_path)

    assert [(u.name, u.path) for u in usages] == [("API_URL", "src/index.js")]
    assert unreadable == []


def test_scan_tree_skips_oversized_files(tmp_path):
    (tmp_path / "big.js").write_text("process.env.TOO_BIG\n" + "x" * 200)
    usages, _ = EnvScanner(max_file_bytes=100).scan_tree(tmp_path)
    assert usages == []


def test_custom_recognizer():
    custom = EnvRecognizer.build("settings.env", r"settings\.env\(['\"]([A-Z_][A-Z0-9_]*)", ["py"])
    assert custom.extensions == (".py",)
    usages = EnvScanner(DEFAULT_RECOGNIZERS + (custom,)).scan_text("x = settings.env('FEATURE_FLAG')", "conf.py")
    assert [(u.name, u.recognizer) for u in usages] == [("FEATURE_FLAG", "settings.env")]


@pytest.mark.parametrize("pattern", [r"settings\.env\((", r"settings\.env"])
def test_invalid_recognizer_patterns(pattern):
    with pytest.raises(ConfigError):
        EnvRecognizer.build("broken", pattern, [".py"])


# --- Configuration --------------------------------------------------------

def test_config_defaults_when_no_file(tmp_path):
    config = CheckerConfig.discover(tmp_path)
    assert config == CheckerConfig()
    assert "docker-compose.yml" in config.compose_files
    assert "typescript" in config.build_tools


def test_config_file_overrides(tmp_path):
    (tmp_path / ".deploycheck.yaml").write_text(
        "compose_files: deploy/compose.yaml\n"
        "internal_services: [worker, mailer]\n"
        "env_example: docs/env.sample\n"
        "recognizers:\n"
        "  - name: settings.env\n"
        "    pattern: \"settings\\\\.env\\\\(['\\\"]([A-Z_][A-Z0-9_]*)\"\n"
        "    extensions: [.py]\n"
    )
    config = CheckerConfig.discover(tmp_path)

    assert config.compose_files == ("deploy/compose.yaml",)
    assert config.internal_services == ("worker", "mailer")
    assert config.env_example == "docs/env.sample"
    # Custom recognizers extend the defaults rather than replacing them
    assert config.recognizers[:len(DEFAULT_RECOGNIZERS)] == DEFAULT_RECOGNIZERS
    assert config.recognizers[-1].name == "settings.env"


@pytest.mark.parametrize("data", [
    {"unknown_setting": True},
    {"internal_services": [1, 2]},
    {"env_example": ""},
    {"max_file_bytes": -5},
    {"recognizers": [{"name": "no-pattern"}]},
    {"recognizers": [{"name": "no-ext", "pattern": "X([A-Z]+)"}]},
    ["not", "a", "mapping"],
])
def test_config_rejects_invalid_settings(data):
    with pytest.raises(ConfigError):
        CheckerConfig.from_mapping(data)


def test_config_invalid_yaml(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("internal_services: [worker\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        CheckerConfig.discover(tmp_path, explicit=path)


def test_explicit_config_must_exist(tmp_path):
    with pytest.raises(ConfigError, match="Unable to read"):
        CheckerConfig.discover(tmp_path, explicit=tmp_path / "missing.yaml")

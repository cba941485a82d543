"""
DEPLOYCHECK CLI SUITE
---------------------
Command routing, output formats and the exit-status contract that lets
`deploycheck check` gate a deployment pipeline.

Author: DeployCheck Team
Date: 2026-10-18
"""

import json

import pytest

from deploycheck.cli.main import DeployCheckCLI, EXIT_USAGE, main


def _run(*argv):
    return DeployCheckCLI().run(list(argv))


def test_consistent_project_exits_zero(consistent_project, capsys):
    assert _run("check", str(consistent_project)) == 0
    output = capsys.readouterr().out
    assert "Deployment Readiness" in output
    assert "PASS" in output


def test_json_output_is_machine_readable(consistent_files, make_project, capsys):
    root = make_project(consistent_files, {
        "Caddyfile": "example.com {\n    reverse_proxy backend:3000\n    reverse_proxy /app/* frontend:80\n}\n",
    })
    code = _run("check", str(root), "--format", "json")
    document = json.loads(capsys.readouterr().out)

    assert code == 1
    assert document["status"] == "fail"
    assert document["counts"]["CRITICAL"] == 1
    assert document["findings"][0]["category"] == "port-consistency"
    assert document["findings"][0]["file"] == "Caddyfile"


def test_strict_mode_fails_on_warnings(consistent_files, make_project, capsys):
    root = make_project(consistent_files, {
        "backend/app/main.py": "import os\nDATABASE_URL = os.environ['DATABASE_URL']\nos.getenv('UNSET_FLAG')\n",
    })
    assert _run("check", str(root), "--format", "json") == 0
    assert json.loads(capsys.readouterr().out)["status"] == "warn"
    assert _run("check", str(root), "--format", "json", "--strict") == 1


def test_explicit_artifact_paths(consistent_files, make_project, capsys):
    files = dict(consistent_files)
    files["deploy/compose.yaml"] = files.pop("docker-compose.yml").replace("./frontend", "../frontend") \
        .replace("./backend", "../backend")
    files["deploy/nginx.conf"] = """
        server {
            listen 80;
            location /api/ { proxy_pass http://backend:8000; }
            location / { proxy_pass http://frontend:80; }
        }
        """
    del files["Caddyfile"]
    root = make_project(files)

    code = _run("check", str(root), "--compose", str(root / "deploy/compose.yaml"),
                "--proxy", str(root / "deploy/nginx.conf"), "--format", "json")
    document = json.loads(capsys.readouterr().out)

    assert code == 0, document["findings"]
    assert document["artifacts"]["compose"] == "deploy/compose.yaml"
    assert document["artifacts"]["proxy_dialect"] == "nginx"


def test_disabled_rule_is_skipped(consistent_files, make_project, capsys):
    root = make_project(consistent_files, {
        "Caddyfile": "example.com {\n    reverse_proxy backend:3000\n    reverse_proxy /app/* frontend:80\n}\n",
    })
    assert _run("check", str(root), "--format", "json", "--disable", "port-consistency") == 0


@pytest.mark.parametrize("argv", [
    ("check", "/definitely/not/a/project"),
    ("check", ".", "--disable", "no-such-rule"),
])
def test_usage_errors_exit_two(argv, capsys):
    assert _run(*argv) == EXIT_USAGE
    assert "Error" in capsys.readouterr().out


def test_invalid_config_exits_two(consistent_project, capsys):
    (consistent_project / ".deploycheck.yaml").write_text("no_such_setting: 1\n")
    assert _run("check", str(consistent_project)) == EXIT_USAGE
    assert "Configuration error" in capsys.readouterr().out


def test_rules_listing(capsys):
    assert _run("rules") == 0
    output = capsys.readouterr().out
    for name in ("syntax", "build-context", "build-deps", "env-coverage", "port-consistency"):
        assert name in output


def test_main_exits_with_report_status(consistent_project, monkeypatch):
    monkeypatch.setattr("sys.argv", ["deploycheck", "check", str(consistent_project), "--format", "json"])
    with pytest.raises(SystemExit) as info:
        main()
    assert info.value.code == 0

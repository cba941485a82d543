"""
DEPLOYCHECK STABILITY SUITE
---------------------------
Whole-run guarantees: repeated runs agree, the project is never
touched, declaration order does not matter, and adding a defect never
improves the verdict.

Author: DeployCheck Team
Date: 2026-10-18
"""

import pytest

from deploycheck.core.engine import CheckEngine
from deploycheck.core.models import DeployCheckError, Severity

STATUS_ORDER = {"pass": 0, "warn": 1, "fail": 2}


def _snapshot(root):
    return {
        path.relative_to(root).as_posix(): (path.read_bytes(), path.stat().st_mtime_ns)
        for path in sorted(root.rglob("*")) if path.is_file()
    }


def test_repeated_runs_are_identical(consistent_project, consistent_files, make_project):
    """
    STABILITY TEST: two runs over the same tree yield the same report.
    """
    broken = make_project(consistent_files, {
        "Caddyfile": "example.com {\n    reverse_proxy backend:3000\n}\n",
    }, name="broken")
    for root in (consistent_project, broken):
        engine = CheckEngine(str(root))
        first = engine.check()
        second = engine.check()
        assert first == second
        assert first.to_json() == second.to_json()


def test_project_is_never_modified(consistent_files, make_project):
    root = make_project(consistent_files, {
        "frontend/Dockerfile": "FROM nginx\nCOPY missing.conf /etc/nginx/\nEXPOSE 80\n",
        "docker-compose.yml": "services:\n  frontend:\n    build: ./frontend\n    ports: ['bad:port:spec:x']\n",
    })
    before = _snapshot(root)

    report = CheckEngine(str(root)).check()

    assert report.status == "fail"
    assert _snapshot(root) == before


def test_service_order_does_not_change_findings(consistent_files, make_project):
    broken = {
        "Caddyfile": "example.com {\n    reverse_proxy backend:9999\n    reverse_proxy /x/* ghost:80\n}\n",
        "backend/app/main.py": "import os\nos.getenv('UNDECLARED_SETTING')\n",
    }
    forward = make_project(consistent_files, broken, name="forward")
    reversed_compose = dict(broken)
    reversed_compose["docker-compose.yml"] = """
        services:
          db:
            image: postgres:16
          backend:
            environment:
              DATABASE_URL: postgres://app@db:5432/app
            build: ./backend
          frontend:
            depends_on:
              - backend
            build:
              context: ./frontend
        """
    backward = make_project(consistent_files, reversed_compose, name="backward")

    first = CheckEngine(str(forward)).check()
    second = CheckEngine(str(backward)).check()

    assert first.status == second.status == "fail"
    assert len(first.findings) == len(second.findings) > 0
    assert sorted((f.severity.value, f.category.value, f.message) for f in first.findings) == \
        sorted((f.severity.value, f.category.value, f.message) for f in second.findings)


@pytest.mark.parametrize("defect", [
    {"frontend/Dockerfile": "FROM nginx\nCOPY docker/nginx.conf /etc/nginx/\nEXPOSE 80\n"},
    {"Caddyfile": "example.com {\n    reverse_proxy backend:8000\n"},
    {"backend/app/main.py": "import os\nos.getenv('NEW_SETTING')\n"},
    {"backend/Dockerfile": "FROM python:3.12\nCOPY app ./app\nEXPOSE 5000\n"},
])
def test_adding_a_defect_never_improves_the_verdict(consistent_project, consistent_files, make_project, defect):
    """
    MONOTONICITY TEST: the broken variant is never judged better than the original.
    """
    baseline = CheckEngine(str(consistent_project)).check()
    degraded = CheckEngine(str(make_project(consistent_files, defect, name="degraded"))).check()

    assert STATUS_ORDER[degraded.status] >= STATUS_ORDER[baseline.status]
    assert STATUS_ORDER[degraded.status] > STATUS_ORDER["pass"]
    assert degraded.counts["CRITICAL"] >= baseline.counts["CRITICAL"]


def test_missing_project_directory(tmp_path):
    with pytest.raises(DeployCheckError):
        CheckEngine(str(tmp_path / "does-not-exist"))


def test_missing_artifacts_are_reported_not_raised(tmp_path):
    report = CheckEngine(str(tmp_path)).check()
    messages = [f.message for f in report.findings]
    assert report.status == "fail"
    assert any("No composition file found" in m for m in messages)
    assert any("No reverse-proxy configuration found" in m for m in messages)


def test_binary_artifact_is_a_host_problem(consistent_files, make_project):
    root = make_project(consistent_files)
    (root / "Caddyfile").write_bytes(b"\xff\xfe\x00garbage\x81")
    report = CheckEngine(str(root)).check()
    critical = report.by_severity(Severity.CRITICAL)
    assert any("not valid UTF-8" in f.message for f in critical)

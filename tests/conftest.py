"""
DEPLOYCHECK TEST FIXTURES
-------------------------
Builds throwaway projects on disk. Every fixture writes into pytest's
tmp_path, so the checker always runs against a real filesystem.

Author: DeployCheck Team
Date: 2026-10-18
"""

import textwrap
from pathlib import Path

import pytest

CONSISTENT_PROJECT = {
    "docker-compose.yml": """
        services:
          frontend:
            build:
              context: ./frontend
            depends_on:
              - backend
          backend:
            build: ./backend
            environment:
              DATABASE_URL: postgres://app@db:5432/app
          db:
            image: postgres:16
        """,
    "Caddyfile": """
        example.com {
            handle /api/* {
                reverse_proxy backend:8000
            }
            handle {
                reverse_proxy frontend:80
            }
        }
        """,
    ".env.example": """
        # Frontend build-time settings
        VITE_API_URL=/api
        """,
    "frontend/Dockerfile": """
        FROM node:20 AS build
        WORKDIR /app
        COPY package.json ./
        RUN npm install
        COPY src ./src
        RUN npm run build

        FROM nginx:alpine
        COPY --from=build /app/dist /usr/share/nginx/html
        EXPOSE 80
        """,
    "frontend/package.json": """
        {"name": "frontend", "scripts": {"build": "vite build"}, "devDependencies": {"vite": "^5.0.0"}}
        """,
    "frontend/src/main.js": """
        const api = import.meta.env.VITE_API_URL;
        export default api;
        """,
    "backend/Dockerfile": """
        FROM python:3.12-slim
        WORKDIR /app
        COPY requirements.txt .
        RUN pip install --no-cache-dir -r requirements.txt
        COPY app ./app
        EXPOSE 8000
        CMD ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", "8000"]
        """,
    "backend/requirements.txt": """
        fastapi
        uvicorn
        """,
    "backend/app/main.py": """
        import os

        DATABASE_URL = os.environ["DATABASE_URL"]
        """,
}


def write_project(root: Path, files: dict) -> Path:
    """Writes {relative path: text} into root, dedenting each body."""
    for relative, body in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(body).lstrip("\n"), encoding="utf-8")
    return root


@pytest.fixture
def make_project(tmp_path):
    """Factory: make_project(files, overrides=None, name='project')."""
    def _make(files: dict, overrides: dict = None, name: str = "project") -> Path:
        merged = dict(files)
        merged.update(overrides or {})
        return write_project(tmp_path / name, merged)
    return _make


@pytest.fixture
def consistent_files():
    return dict(CONSISTENT_PROJECT)


@pytest.fixture
def consistent_project(make_project):
    return make_project(CONSISTENT_PROJECT)

"""
DEPLOYCHECK RECIPE LEXER SUITE
------------------------------
Instruction sharding: stages, continuations, directives, heredocs
and the all-or-nothing error contract.

Author: DeployCheck Team
Date: 2026-10-18
"""

import pytest

from deploycheck.core.models import InstructionKind, ParseError
from deploycheck.parsing.lexer import parse_recipe, split_arguments

MULTI_STAGE = """\
ARG NODE_VERSION=20
FROM node:${NODE_VERSION} AS build
WORKDIR /app
COPY package*.json ./
RUN npm ci
COPY . .
RUN npm run build

FROM nginx:alpine
COPY --from=build /app/dist /usr/share/nginx/html
EXPOSE 80
"""


def test_multi_stage_recipe():
    recipe = parse_recipe(MULTI_STAGE)

    # 1. Stages are tracked in order with their names
    assert [s.base_image for s in recipe.stages] == ["node:${NODE_VERSION}", "nginx:alpine"]
    assert recipe.stages[0].name == "build"
    assert recipe.final_stage.label == "stage 1"

    # 2. Global ARG lives before the first stage
    assert recipe.instructions[0].kind is InstructionKind.ARG
    assert recipe.instructions[0].stage_index == -1

    # 3. Flags are peeled off the arguments
    copy_from = [i for i in recipe.instructions if i.flags.get("from") == "build"]
    assert len(copy_from) == 1
    assert copy_from[0].arguments == "/app/dist /usr/share/nginx/html"
    assert copy_from[0].line_no == 10


def test_continuations_skip_comments_and_blank_lines():
    text = (
        "FROM debian:bookworm\n"
        "RUN apt-get update \\\n"
        "    # cache cleanup follows\n"
        "\n"
        "    && apt-get install -y curl \\\n"
        "    && rm -rf /var/lib/apt/lists/*\n"
        "EXPOSE 8080\n"
    )
    recipe = parse_recipe(text)
    run = recipe.instructions[1]

    assert run.kind is InstructionKind.RUN
    assert run.line_no == 2
    assert run.arguments == "apt-get update && apt-get install -y curl && rm -rf /var/lib/apt/lists/*"
    assert recipe.instructions[2].line_no == 7


def test_escape_directive_changes_continuation_character():
    text = (
        "# escape=`\n"
        "FROM mcr.microsoft.com/windows/servercore\n"
        "RUN dir c:\\ `\n"
        "    && echo done\n"
    )
    recipe = parse_recipe(text)
    assert recipe.instructions[1].arguments == "dir c:\\ && echo done"


def test_heredoc_body_travels_with_instruction():
    text = (
        "FROM alpine\n"
        "COPY <<EOF /etc/app.conf\n"
        "listen 8080\n"
        "EOF\n"
        "EXPOSE 8080\n"
    )
    recipe = parse_recipe(text)
    copy = recipe.instructions[1]

    assert "heredoc" in copy.flags
    assert "listen 8080" in copy.arguments
    assert recipe.instructions[2].kind is InstructionKind.EXPOSE
    assert recipe.instructions[2].line_no == 5


def test_bom_and_crlf_are_normalized():
    recipe = parse_recipe("\ufeffFROM alpine\r\nEXPOSE 80\r\n")
    assert [i.kind for i in recipe.instructions] == [InstructionKind.FROM, InstructionKind.EXPOSE]


@pytest.mark.parametrize("text, line", [
    ("FROM alpine\nFOO bar\n", 2),
    ("RUN echo hi\nFROM alpine\n", 1),
    ("FROM alpine\nRUN echo hi \\\n\n", 2),
    ("FROM alpine\nRUN <<EOF\necho hi\n", 2),
    ("FROM alpine extra words\n", 1),
])
def test_malformed_recipes_raise(text, line):
    """
    RECOVERY TEST: a broken recipe must never yield a partial model.
    """
    with pytest.raises(ParseError) as info:
        parse_recipe(text, "web/Dockerfile")
    assert info.value.artifact == "web/Dockerfile"
    assert info.value.line == line


def test_recipe_without_from_raises():
    with pytest.raises(ParseError, match="no FROM"):
        parse_recipe("ARG VERSION=1\n# only a comment\n")


@pytest.mark.parametrize("arguments, words", [
    ('["node", "server.js"]', ["node", "server.js"]),
    ('gunicorn --bind "0.0.0.0:8000" app:app', ["gunicorn", "--bind", "0.0.0.0:8000", "app:app"]),
    ('echo "unterminated', ["echo", '"unterminated']),
])
def test_split_arguments(arguments, words):
    assert split_arguments(arguments) == words

"""Tyro CLI application entrypoint."""

from __future__ import annotations

from typing import Annotated

import tyro

from echoafc.cli import commands_analyze, commands_areas


TopLevelCommand = Annotated[
    commands_analyze.AnalyzeCommand,
    tyro.conf.subcommand(name="analyze"),
] | Annotated[
    commands_areas.AreasCommand,
    tyro.conf.subcommand(name="areas"),
]


def dispatch(command: TopLevelCommand) -> int:
    """Dispatch parsed top-level command object and return its exit code."""

    if isinstance(command, commands_analyze.AnalyzeCommand):
        return commands_analyze.execute(command)
    if isinstance(command, commands_areas.AreasCommand):
        return commands_areas.execute(command)
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and run requested command."""

    command = tyro.cli(TopLevelCommand, args=argv)
    code = dispatch(command)
    if code:
        raise SystemExit(code)

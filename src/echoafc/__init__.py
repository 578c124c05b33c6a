"""echoafc package entrypoint."""

from echoafc.cli.app import main as _cli_main


def main() -> None:
    """Run the echoafc CLI."""
    _cli_main()

"""Allow `python -m slack_mcp_server` to invoke the CLI entry-point."""

from .cli import app


def main() -> None:
    app(prog_name="slack-mcp-server")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()

"""Command-line entrypoint that serves the API with uvicorn."""

import argparse

import uvicorn

from session_gateway.config import Settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line overrides for the bind address."""
    parser = argparse.ArgumentParser(description="Run the session gateway API.")
    parser.add_argument("--host", default=None, help="Bind address (overrides env).")
    parser.add_argument(
        "--port", type=int, default=None, help="Port to bind to (overrides env)."
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Start the ASGI server."""
    args = parse_args(argv)
    settings = Settings()
    uvicorn.run(
        "session_gateway.api.asgi:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()

"""Web server entrypoint.

Runs the Starlette web application using uvicorn. For production,
use uvicorn directly with appropriate workers:

    uvicorn vitals.server:create_app --factory --workers 3

Usage: python -m vitals.server
"""
import uvicorn

from vitals.lib.config import get_settings


def main() -> None:
    """Run the web server for local development."""
    server = get_settings().server
    uvicorn.run(
        "vitals.server:create_app",
        factory=True,
        host=server.host,
        port=server.port,
    )


if __name__ == "__main__":
    main()

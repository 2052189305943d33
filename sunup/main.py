"""Sunup entrypoint."""

import uvicorn


def cli() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run("sunup.web.app:create_app", factory=True)


if __name__ == "__main__":
    cli()

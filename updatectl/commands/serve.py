import typer

from updatectl.config import get_config


def serve(
    host: str = typer.Option(None, help="Bind address (default from config)"),
    port: int = typer.Option(None, help="Port (default from config)"),
):
    """Serve the HTTP status and command API."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "updatectl.api.main:app",
        host=host or config.api.host,
        port=port or config.api.port,
        log_level=config.logging.level.lower(),
    )

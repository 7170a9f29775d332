import logging
import sys
from typing import Optional

import typer

from updatectl.commands import serve, start, status
from updatectl.config import UpdaterConfig, config_summary, get_config, set_config
from updatectl.logging import configure_logging

app = typer.Typer(help="Rolling OS and cluster runtime updates, one node at a time.")

app.add_typer(start.app, name="start")
app.command("status")(status.show_status)
app.command("check")(status.check_updates)
app.command("reset")(status.reset_state)
app.command("serve")(serve.serve)


@app.command("config")
def show_config():
    """Show the active configuration."""
    for line in config_summary(get_config()):
        typer.echo(line)


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
):
    """updatectl - rolling cluster update orchestrator."""
    config = UpdaterConfig.load(config_path)
    if debug:
        config.logging.level = "DEBUG"
    set_config(config)
    configure_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )
    if debug:
        logging.getLogger("updatectl").debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Interrupted")
        sys.exit(130)

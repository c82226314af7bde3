import os
from pathlib import Path
from typing import List, Optional

import pulumi
import typer

from config import Config, load_config
from errors import ConfigurationError
from lifecycle import Phase, RunResult, run_phases
from ocifunctions import OCIProvider

DEFAULT_CONFIG_FILE = "config.yaml"

app = typer.Typer(add_completion=False, help="Set up, invoke and tear down an OCI function.")


def create_provider(config: Config) -> OCIProvider:
    return OCIProvider.from_file(config.oci.config_file, config.oci.profile, config.region)


def report(result: RunResult) -> None:
    if result.response is not None:
        typer.echo(result.response)
    for failure in result.failures:
        pulumi.log.error(f"Failed: {failure}")
    if result.retry_teardown_later:
        pulumi.log.warn("Some resources could not be deleted yet. Run the 'teardown' phase again later.")


@app.command()
def main(
    phases: List[Phase] = typer.Argument(..., help="Phases to run, in order: setup, invoke, teardown."),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"YAML configuration file (defaults to ./{DEFAULT_CONFIG_FILE} if present)."
    ),
) -> None:
    if config_file is None and os.path.exists(DEFAULT_CONFIG_FILE):
        config_file = Path(DEFAULT_CONFIG_FILE)

    try:
        config = load_config(str(config_file) if config_file else None, require_image=Phase.SETUP in phases)
        result = run_phases(config, phases, create_provider)
    except ConfigurationError as e:
        pulumi.log.error(f"Configuration error: {e}")
        raise typer.Exit(code=2) from e
    except Exception as e:
        pulumi.log.error(f"Run aborted: {e}")
        raise typer.Exit(code=1) from e

    report(result)
    if not result.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

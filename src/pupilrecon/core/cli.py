"""CLI for pupilrecon."""

import logging
import pathlib
from enum import Enum
from typing import Optional

import typer

from pupilrecon.core import config, exceptions

logger = config.get_logger()
app = typer.Typer(
    help="Run the automatic blink reconstruction over a collection of pupil sessions.",
)


class OnAmbiguous(str, Enum):
    """Setting the handling of partially processed sessions for typer.

    This class is used to define the literal types that are allowed for
    partially processed sessions, and parsing the strings for the orchestrator.
    """

    skip = "skip"
    run = "run"
    leave = "leave"


def version_check(version: bool) -> None:
    """Print the current version of pupilrecon and exit."""
    if version:
        typer.echo(f"pupilrecon version: {config.get_version()}")
        raise typer.Exit()


@app.command()
def main(
    input: pathlib.Path = typer.Argument(
        ...,
        help="Path to the input data. Either a saved collection (.npz) or a table "
        "(.csv, .parquet) with 'session', 'time' and 'pupil' columns.",
        exists=True,
    ),
    output: Optional[pathlib.Path] = typer.Option(
        None,
        "-o",
        "--output",
        help="Path where the processed collection will be saved. Must be a .npz file.",
    ),
    export: Optional[pathlib.Path] = typer.Option(
        None,
        "-x",
        "--export",
        help="Path where the output series will be exported. "
        "Supports .csv and .parquet formats.",
    ),
    hann_win: Optional[int] = typer.Option(
        None,
        "--hann-win",
        help="Hann smoothing window, in samples. Defaults to 11.",
        min=1,
    ),
    resample_rate: Optional[float] = typer.Option(
        None,
        "-r",
        "--resample-rate",
        help="Sampling rate of the output, in Hz. Defaults to 120.",
    ),
    resample_multiplier: Optional[float] = typer.Option(
        None,
        "--resample-multiplier",
        help="Multiplies the rate and window the algorithm works at. Defaults to 1.",
    ),
    pos_threshold_multiplier: Optional[float] = typer.Option(
        None,
        "--pos-threshold-multiplier",
        help="Scales the velocity threshold for blink offsets. Defaults to 1.",
    ),
    neg_threshold_multiplier: Optional[float] = typer.Option(
        None,
        "--neg-threshold-multiplier",
        help="Scales the velocity threshold for blink onsets. Defaults to 1.",
    ),
    on_ambiguous: OnAmbiguous = typer.Option(
        OnAmbiguous.skip,
        "-a",
        "--on-ambiguous",
        help="What to do with partially processed sessions. "
        "Must choose one of 'skip', 'run', or 'leave'.",
        case_sensitive=False,
    ),
    verbosity: bool = typer.Option(
        False,
        "-v",
        "--verbosity",
        help="Determines the level of verbosity. Use -v for DEBUG. "
        "Defaults to INFO if not included.",
    ),
    version: bool = typer.Option(
        False,
        "-V",
        "--version",
        help="Print the current version of pupilrecon and exit.",
        is_eager=True,
        callback=version_check,
    ),
) -> None:
    """Run pupilrecon orchestrator with command line arguments."""
    from pupilrecon.core import orchestrator

    log_level = logging.INFO
    if verbosity:
        log_level = logging.DEBUG
    logger.setLevel(log_level)

    filter_parameters = {
        name: value
        for name, value in (
            ("hann_win", hann_win),
            ("resample_rate", resample_rate),
            ("resample_multiplier", resample_multiplier),
            ("pos_threshold_multiplier", pos_threshold_multiplier),
            ("neg_threshold_multiplier", neg_threshold_multiplier),
        )
        if value is not None
    }

    logger.debug("Running pupilrecon. arguments given: %s", locals())
    try:
        orchestrator.run(
            input=input,
            output=output,
            export=export,
            config=filter_parameters or None,
            on_ambiguous=on_ambiguous.value,
            verbosity=log_level,
        )
    except (
        exceptions.InvalidFileTypeError,
        exceptions.InvalidSessionRecord,
        exceptions.InvalidFilterConfiguration,
        exceptions.PersistenceFailure,
    ) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()

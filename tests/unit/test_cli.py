"""Test the pupilrecon cli."""

import logging
import pathlib

import pytest
import pytest_mock
from typer import testing

from pupilrecon.core import cli, exceptions, orchestrator


@pytest.fixture
def create_typer_cli_runner() -> testing.CliRunner:
    """Create a Typer CLI runner."""
    return testing.CliRunner()


def test_main_default(
    mocker: pytest_mock.MockerFixture,
    pupil_csv: pathlib.Path,
    create_typer_cli_runner: testing.CliRunner,
) -> None:
    """Test cli with only necessary arguments."""
    mock_run = mocker.patch.object(orchestrator, "run")

    result = create_typer_cli_runner.invoke(cli.app, [str(pupil_csv)])

    assert result.exit_code == 0
    mock_run.assert_called_once_with(
        input=pupil_csv,
        output=None,
        export=None,
        config=None,
        on_ambiguous="skip",
        verbosity=logging.INFO,
    )


def test_main_with_options(
    mocker: pytest_mock.MockerFixture,
    pupil_csv: pathlib.Path,
    tmp_path: pathlib.Path,
    create_typer_cli_runner: testing.CliRunner,
) -> None:
    """Test cli with every option given."""
    mock_run = mocker.patch.object(orchestrator, "run")
    output = tmp_path / "collection.npz"
    export = tmp_path / "outputs.parquet"

    result = create_typer_cli_runner.invoke(
        cli.app,
        [
            str(pupil_csv),
            "-o",
            str(output),
            "-x",
            str(export),
            "--hann-win",
            "21",
            "-r",
            "60",
            "--resample-multiplier",
            "2",
            "--pos-threshold-multiplier",
            "0.5",
            "--neg-threshold-multiplier",
            "1.5",
            "-a",
            "RUN",
            "-v",
        ],
    )

    assert result.exit_code == 0
    mock_run.assert_called_once_with(
        input=pupil_csv,
        output=output,
        export=export,
        config={
            "hann_win": 21,
            "resample_rate": 60.0,
            "resample_multiplier": 2.0,
            "pos_threshold_multiplier": 0.5,
            "neg_threshold_multiplier": 1.5,
        },
        on_ambiguous="run",
        verbosity=logging.DEBUG,
    )


def test_main_invalid_on_ambiguous(
    pupil_csv: pathlib.Path, create_typer_cli_runner: testing.CliRunner
) -> None:
    """Test that an unknown option for ambiguous sessions is rejected by typer."""
    result = create_typer_cli_runner.invoke(
        cli.app, [str(pupil_csv), "--on-ambiguous", "ask"]
    )

    assert result.exit_code != 0


def test_main_invalid_hann_win(
    pupil_csv: pathlib.Path, create_typer_cli_runner: testing.CliRunner
) -> None:
    """Test that the smoothing window must be positive."""
    result = create_typer_cli_runner.invoke(
        cli.app, [str(pupil_csv), "--hann-win", "0"]
    )

    assert result.exit_code != 0


def test_main_missing_input(
    tmp_path: pathlib.Path, create_typer_cli_runner: testing.CliRunner
) -> None:
    """Test that the input must exist."""
    result = create_typer_cli_runner.invoke(cli.app, [str(tmp_path / "missing.csv")])

    assert result.exit_code != 0


def test_main_reports_errors(
    mocker: pytest_mock.MockerFixture,
    pupil_csv: pathlib.Path,
    create_typer_cli_runner: testing.CliRunner,
) -> None:
    """Test that known failures exit with status 1."""
    mocker.patch.object(
        orchestrator,
        "run",
        side_effect=exceptions.InvalidFileTypeError("Unsupported file."),
    )

    result = create_typer_cli_runner.invoke(cli.app, [str(pupil_csv)])

    assert result.exit_code == 1


def test_version(create_typer_cli_runner: testing.CliRunner) -> None:
    """Test the version flag."""
    result = create_typer_cli_runner.invoke(cli.app, ["-V"])

    assert result.exit_code == 0
    assert "pupilrecon version:" in result.output

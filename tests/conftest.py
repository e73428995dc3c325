"""Fixtures used by pytest."""

import pathlib
from typing import List

import numpy as np
import polars as pl
import pytest

from pupilrecon.core import models
from pupilrecon.processing import blinks, editing


class CountingAlgorithm(blinks.AbstractReconstructionAlgorithm):
    """Deterministic stand-in for the automatic algorithm that records its calls.

    The reconstructed trace is the raw trace shifted by hann_win, so results
    obtained with different configurations can be told apart.
    """

    def __init__(self) -> None:
        """Initializes class."""
        self.calls: List[models.FilterConfiguration] = []

    def reconstruct(
        self, raw: models.TimeSeries, filter_config: models.FilterConfiguration
    ) -> blinks.ReconstructionResult:
        """Records the call and returns a shifted copy of the raw trace."""
        self.calls.append(filter_config)
        marker = models.BlinkMarkers(
            time=raw.time[:1],
            values=raw.values[:1],
            velocity_time=raw.time[1:2],
            velocity=[0.0],
        )
        return blinks.ReconstructionResult(
            velocity=models.TimeSeries(
                time=raw.time[1:], values=np.diff(raw.values)
            ),
            blink_onset=marker,
            blink_offset=marker.copy(),
            reconstructed=models.TimeSeries(
                time=raw.time.copy(), values=raw.values + filter_config.hann_win
            ),
            resampled=raw.copy(),
        )


class ScriptedEditor(editing.AbstractManualEditor):
    """Manual editor that returns a prepared answer."""

    def __init__(self, accepted: bool, offset: float = 1.0) -> None:
        """Initializes class."""
        self.accepted = accepted
        self.offset = offset
        self.received: List[models.TimeSeries] = []

    def edit(self, reconstructed: models.TimeSeries) -> editing.EditResult:
        """Returns the trace shifted by offset when accepting."""
        self.received.append(reconstructed)
        if not self.accepted:
            return editing.EditResult(accepted=False)
        return editing.EditResult(
            accepted=True,
            edited=models.TimeSeries(
                time=reconstructed.time, values=reconstructed.values + self.offset
            ),
        )


@pytest.fixture
def counting_algorithm() -> CountingAlgorithm:
    """An algorithm that records every call."""
    return CountingAlgorithm()


@pytest.fixture
def accepting_editor() -> ScriptedEditor:
    """An editor that accepts and raises the trace by 1."""
    return ScriptedEditor(accepted=True)


@pytest.fixture
def discarding_editor() -> ScriptedEditor:
    """An editor that discards its edits."""
    return ScriptedEditor(accepted=False)


@pytest.fixture
def flat_series() -> models.TimeSeries:
    """Ten seconds of a constant pupil at 100 Hz."""
    time = np.arange(1000) / 100
    return models.TimeSeries(time=time, values=np.full(1000, 4.0))


@pytest.fixture
def gappy_series() -> models.TimeSeries:
    """Ten seconds of a constant pupil at 100 Hz with a gap from 3.00 to 3.19 s."""
    time = np.arange(1000) / 100
    values = np.full(1000, 4.0)
    values[300:320] = np.nan
    return models.TimeSeries(time=time, values=values)


@pytest.fixture
def blink_series() -> models.TimeSeries:
    """Ten seconds of pupil data at 100 Hz with one blink.

    The pupil shrinks from 4 to 2 between 2.9 and 3.0 s, the tracker reports 0
    from 3.0 to 3.2 s, and the pupil recovers to 4 by 3.3 s.
    """
    time = np.arange(1000) / 100
    values = np.full(1000, 4.0)
    values[290:300] = np.linspace(4.0, 2.0, 10, endpoint=False)
    values[300:321] = 0.0
    values[321:331] = np.linspace(2.0, 4.0, 10)
    return models.TimeSeries(time=time, values=values)


@pytest.fixture
def raw_session(flat_series: models.TimeSeries) -> models.SessionRecord:
    """A session that was never processed."""
    return models.SessionRecord(raw=flat_series, label="subject-01")


@pytest.fixture
def two_session_collection(
    flat_series: models.TimeSeries, gappy_series: models.TimeSeries
) -> models.SessionCollection:
    """A collection of two unprocessed sessions."""
    return models.SessionCollection.from_records(
        [
            {"raw": flat_series, "label": "subject-01"},
            {"raw": gappy_series, "label": "subject-02"},
        ]
    )


@pytest.fixture
def pupil_table() -> pl.DataFrame:
    """A long format table with two sessions, the second listed out of order."""
    time = np.arange(200) / 100
    pupil = np.full(200, 3.5)
    pupil[50:60] = np.nan
    return pl.DataFrame(
        {
            "session": [7] * 200 + [3] * 200,
            "time": np.concatenate([time, time[::-1]]),
            "pupil": np.concatenate([pupil, np.full(200, 5.0)]),
        }
    )


@pytest.fixture
def pupil_csv(tmp_path: pathlib.Path, pupil_table: pl.DataFrame) -> pathlib.Path:
    """The pupil table written as a .csv file."""
    path = tmp_path / "pupil.csv"
    pupil_table.write_csv(path)
    return path

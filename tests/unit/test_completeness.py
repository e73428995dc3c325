"""Test the completeness classification of sessions."""

import numpy as np
import pytest

from pupilrecon.core import models
from pupilrecon.processing import completeness


@pytest.fixture
def complete_session(flat_series: models.TimeSeries) -> models.SessionRecord:
    """A session with every derived field populated."""
    markers = models.BlinkMarkers(
        time=[1.0], values=[4.0], velocity_time=[1.0], velocity=[0.0]
    )
    return models.SessionRecord(
        raw=flat_series,
        output=flat_series.copy(),
        reconstructed=flat_series.copy(),
        velocity=flat_series.copy(),
        blink_onset=markers,
        blink_offset=markers.copy(),
        filter_config=models.FilterConfiguration(session_index=1),
    )


def test_not_started(raw_session: models.SessionRecord) -> None:
    """Test a session with only raw data."""
    assert completeness.evaluate(raw_session) == completeness.Completeness.NOT_STARTED
    assert completeness.populated_fields(raw_session) == []


def test_complete(complete_session: models.SessionRecord) -> None:
    """Test a session with every derived field."""
    assert completeness.evaluate(complete_session) == completeness.Completeness.COMPLETE


def test_empty_series_count_as_absent(raw_session: models.SessionRecord) -> None:
    """Test that present but empty series do not count as populated."""
    raw_session.output = models.TimeSeries.empty()
    raw_session.velocity = models.TimeSeries.empty()

    assert completeness.evaluate(raw_session) == completeness.Completeness.NOT_STARTED


def test_markers_without_blinks_count_as_populated(
    complete_session: models.SessionRecord,
) -> None:
    """Test that a recording without blinks is still complete."""
    complete_session.blink_onset = models.BlinkMarkers.empty()
    complete_session.blink_offset = models.BlinkMarkers.empty()

    assert completeness.is_populated(complete_session, "blink_onset")
    assert completeness.evaluate(complete_session) == completeness.Completeness.COMPLETE


def test_ambiguous_with_empty_markers(
    flat_series: models.TimeSeries, raw_session: models.SessionRecord
) -> None:
    """Test a session with output and velocity but no blink onsets."""
    raw_session.output = flat_series.copy()
    raw_session.velocity = flat_series.copy()
    raw_session.blink_onset = models.BlinkMarkers.empty()

    assert completeness.evaluate(raw_session) == completeness.Completeness.AMBIGUOUS
    assert completeness.populated_fields(raw_session) == [
        "output",
        "velocity",
        "blink_onset",
    ]


def test_configuration_alone_is_ambiguous(raw_session: models.SessionRecord) -> None:
    """Test that a filter configuration counts as a derived field."""
    raw_session.filter_config = models.FilterConfiguration(session_index=1)

    assert completeness.evaluate(raw_session) == completeness.Completeness.AMBIGUOUS


@pytest.mark.parametrize("field_name", models.DERIVED_FIELDS)
def test_one_missing_field_is_ambiguous(
    complete_session: models.SessionRecord, field_name: str
) -> None:
    """Test that removing any derived field makes the session ambiguous."""
    setattr(complete_session, field_name, None)

    state = completeness.evaluate(complete_session)

    assert state == completeness.Completeness.AMBIGUOUS


def test_is_populated(complete_session: models.SessionRecord) -> None:
    """Test the field check, including fields that are not series."""
    complete_session.reconstructed = models.TimeSeries(
        time=[0.0, 1.0], values=[np.nan, np.nan]
    )

    assert completeness.is_populated(complete_session, "reconstructed")
    assert completeness.is_populated(complete_session, "filter_config")
    assert not completeness.is_populated(complete_session, "resampled")
    assert not completeness.is_populated(complete_session, "not_a_field")

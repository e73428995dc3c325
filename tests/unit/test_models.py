"""Test the pupilrecon data models."""

import numpy as np
import pydantic
import pytest

from pupilrecon.core import exceptions, models


def test_time_series_coerces_to_float() -> None:
    """Test that array-likes are converted to float64 arrays."""
    series = models.TimeSeries(time=[0, 1, 2], values=[1, 2, 3])

    assert series.time.dtype == np.float64
    assert series.values.dtype == np.float64
    assert len(series) == 3


@pytest.mark.parametrize(
    "time, values",
    [
        ([0.0, 1.0, 2.0], [1.0, 2.0]),
        ([0.0, 2.0, 1.0], [1.0, 2.0, 3.0]),
        ([0.0, 1.0, 1.0], [1.0, 2.0, 3.0]),
        ([0.0, np.nan, 2.0], [1.0, 2.0, 3.0]),
        ([[0.0, 1.0]], [[1.0, 2.0]]),
    ],
)
def test_time_series_invalid(time: list, values: list) -> None:
    """Test that mismatched lengths, bad timestamps and 2-D input are rejected."""
    with pytest.raises(ValueError):
        models.TimeSeries(time=time, values=values)


def test_time_series_allows_missing_values() -> None:
    """Test that NaN values mark missing samples."""
    series = models.TimeSeries(time=[0.0, 1.0, 2.0], values=[1.0, np.nan, 3.0])

    assert series.missing.tolist() == [False, True, False]


def test_time_series_copy_is_independent() -> None:
    """Test that a copy does not share memory with the original."""
    series = models.TimeSeries(time=[0.0, 1.0], values=[1.0, np.nan])

    copied = series.copy()
    copied.values[0] = 10.0

    assert series.values[0] == 1.0
    assert not series.equals(copied)


def test_time_series_equals_nan_placement() -> None:
    """Test that equality compares NaN placement."""
    series = models.TimeSeries(time=[0.0, 1.0], values=[1.0, np.nan])
    shifted = models.TimeSeries(time=[0.0, 1.0], values=[np.nan, 1.0])

    assert series.equals(series.copy())
    assert not series.equals(shifted)
    assert not series.equals(None)


def test_empty_time_series() -> None:
    """Test the empty time series."""
    series = models.TimeSeries.empty()

    assert series.is_empty
    assert len(series) == 0


def test_blink_markers_lengths() -> None:
    """Test that every marker array must have the same length."""
    with pytest.raises(ValueError):
        models.BlinkMarkers(
            time=[1.0, 2.0], values=[3.0, 3.0], velocity_time=[1.0], velocity=[0.0]
        )


def test_blink_markers_empty() -> None:
    """Test the empty marker set."""
    markers = models.BlinkMarkers.empty()

    assert markers.is_empty
    assert markers.equals(markers.copy())


def test_filter_configuration_defaults() -> None:
    """Test the default filter parameters."""
    filter_config = models.FilterConfiguration(session_index=1)

    assert filter_config.hann_win == 11
    assert filter_config.resample_rate == 120.0
    assert filter_config.resample_multiplier == 1.0
    assert filter_config.pos_threshold_multiplier == 1.0
    assert filter_config.neg_threshold_multiplier == 1.0
    assert filter_config.algorithm_rate == 120.0


def test_filter_configuration_with_updates() -> None:
    """Test that updates build a new configuration."""
    filter_config = models.FilterConfiguration(session_index=1)

    updated = filter_config.with_updates(hann_win=21, resample_multiplier=2)

    assert updated.hann_win == 21
    assert updated.algorithm_rate == 240.0
    assert filter_config.hann_win == 11


@pytest.mark.parametrize(
    "changes",
    [
        {"hann_win": 0},
        {"resample_rate": -120.0},
        {"resample_rate": float("inf")},
        {"resample_multiplier": 0},
        {"smoothing": 3},
    ],
)
def test_filter_configuration_invalid_updates(changes: dict) -> None:
    """Test that invalid or unknown parameters are rejected."""
    filter_config = models.FilterConfiguration(session_index=1)

    with pytest.raises(exceptions.InvalidFilterConfiguration):
        filter_config.with_updates(**changes)


def test_filter_configuration_frozen() -> None:
    """Test that configurations cannot be changed in place."""
    filter_config = models.FilterConfiguration(session_index=1)

    with pytest.raises(pydantic.ValidationError):
        filter_config.hann_win = 3  # type: ignore[misc]


def test_session_record_requires_samples() -> None:
    """Test that the raw series of a session cannot be empty."""
    with pytest.raises(ValueError):
        models.SessionRecord(raw=models.TimeSeries.empty())


def test_collection_from_records(flat_series: models.TimeSeries) -> None:
    """Test building a collection from mappings and records."""
    collection = models.SessionCollection.from_records(
        [
            {"raw": flat_series, "label": "a"},
            models.SessionRecord(raw=flat_series, label="b", exclude=True),
        ]
    )

    assert len(collection) == 2
    assert collection.session(1).label == "a"
    assert collection.session(2).exclude
    assert models.SessionCollection.from_records(collection) is collection


def test_collection_from_records_empty() -> None:
    """Test that an empty collection is rejected."""
    with pytest.raises(exceptions.InvalidSessionRecord, match="empty"):
        models.SessionCollection.from_records([])


def test_collection_from_records_missing_raw(flat_series: models.TimeSeries) -> None:
    """Test that the invalid session is named."""
    with pytest.raises(exceptions.InvalidSessionRecord, match="Session 2"):
        models.SessionCollection.from_records(
            [{"raw": flat_series}, {"label": "no data"}]
        )


def test_collection_from_records_malformed(flat_series: models.TimeSeries) -> None:
    """Test that malformed fields are reported with their session."""
    with pytest.raises(exceptions.InvalidSessionRecord, match="Session 1 is invalid"):
        models.SessionCollection.from_records(
            [{"raw": {"time": [0.0, 1.0], "values": [1.0]}}]
        )


def test_collection_session_out_of_range(flat_series: models.TimeSeries) -> None:
    """Test that session indices are 1-based."""
    collection = models.SessionCollection.from_records([{"raw": flat_series}])

    with pytest.raises(IndexError):
        collection.session(0)

"""Gap tracking and rate conversion of pupil time series."""

import fractions
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from scipy import signal

from pupilrecon.core import config, exceptions, models

logger = config.get_logger()

MAX_RATE_DENOMINATOR = 100
ANTI_ALIASING_WINDOW = ("kaiser", 10.0)


@dataclass(frozen=True)
class Gap:
    """A maximal run of consecutive missing samples.

    Attributes:
        start: Timestamp of the first missing sample of the run.
        end: Timestamp of the last missing sample of the run.
    """

    start: float
    end: float


def missing_runs(values: np.ndarray) -> List[Tuple[int, int]]:
    """Finds runs of consecutive NaN values.

    Args:
        values: The samples to inspect.

    Returns:
        Inclusive (first, last) sample indices of each run, in order.
    """
    missing = np.isnan(values).astype(np.int8)
    edges = np.diff(np.concatenate(([0], missing, [0])))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1) - 1
    return list(zip(starts.tolist(), ends.tolist()))


def find_gaps(series: models.TimeSeries) -> List[Gap]:
    """Finds the missing data intervals of a time series.

    Gaps are expressed as timestamps so that they can be compared against series
    sampled at a different rate.

    Args:
        series: The time series to inspect.

    Returns:
        The ordered gaps. Empty when no sample is missing.
    """
    return [
        Gap(start=float(series.time[first]), end=float(series.time[last]))
        for first, last in missing_runs(series.values)
    ]


def infer_rate(series: models.TimeSeries) -> float:
    """Infers the sampling rate from the median timestamp step.

    Args:
        series: A time series with at least two samples.

    Returns:
        The sampling rate in Hz.
    """
    return float(1.0 / np.median(np.diff(series.time)))


def mask_gaps(
    time: np.ndarray, values: np.ndarray, gaps: List[Gap]
) -> np.ndarray:
    """Sets every sample whose timestamp falls inside a gap to NaN.

    Args:
        time: Timestamps of the samples.
        values: The samples, not modified.
        gaps: The intervals to blank, bounds included.

    Returns:
        A copy of values with the gaps re-applied.
    """
    masked = values.copy()
    in_gap = np.zeros(time.shape, dtype=bool)
    for gap in gaps:
        in_gap |= (time >= gap.start) & (time <= gap.end)
    masked[in_gap] = np.nan
    return masked


def resample(series: models.TimeSeries, rate: float) -> models.TimeSeries:
    """Resamples a time series to a new rate without filling its gaps.

    The series is put on a uniform grid starting at its first timestamp. When the
    requested rate is below the source rate, the samples are interpolated onto a
    uniform grid close to the source rate and passed through a polyphase
    anti-aliasing filter. Otherwise they are linearly interpolated onto the new grid.
    Interpolation runs through missing samples, so every output timestamp that lies
    in a gap of the input is set back to NaN afterwards.

    Args:
        series: The time series to resample.
        rate: The new sampling rate, in Hz.

    Returns:
        The resampled time series.

    Raises:
        InvalidRateConversionInput: If the rate is not a positive number or the series
            has fewer than two samples.
    """
    if not np.isfinite(rate) or rate <= 0:
        raise exceptions.InvalidRateConversionInput(
            f"Resampling rate must be a positive number, got {rate}."
        )
    if len(series) < 2:
        raise exceptions.InvalidRateConversionInput(
            f"Resampling needs at least 2 samples, got {len(series)}."
        )

    start = float(series.time[0])
    duration = float(series.time[-1]) - start
    n_samples = int(np.floor(duration * rate + 1e-9)) + 1
    new_time = start + np.arange(n_samples) / rate

    valid = ~series.missing
    if not valid.any():
        logger.debug("Series has no valid samples, returning an empty grid.")
        return models.TimeSeries(time=new_time, values=np.full(n_samples, np.nan))

    source_rate = infer_rate(series)
    ratio = fractions.Fraction(source_rate / rate).limit_denominator(
        MAX_RATE_DENOMINATOR
    )

    if ratio > 1:
        down, up = ratio.numerator, ratio.denominator
        intermediate_rate = rate * down / up
        n_intermediate = int(np.floor(duration * intermediate_rate + 1e-9)) + 1
        intermediate_time = start + np.arange(n_intermediate) / intermediate_rate
        intermediate = np.interp(
            intermediate_time, series.time[valid], series.values[valid]
        )
        new_values = signal.resample_poly(
            intermediate, up, down, window=ANTI_ALIASING_WINDOW, padtype="line"
        )
        new_values = new_values[:n_samples]
    else:
        new_values = np.interp(new_time, series.time[valid], series.values[valid])

    logger.debug(
        "Resampled %d samples at %.3f Hz to %d samples at %.3f Hz.",
        len(series),
        source_rate,
        n_samples,
        rate,
    )
    return models.TimeSeries(
        time=new_time,
        values=mask_gaps(new_time, new_values, find_gaps(series)),
    )

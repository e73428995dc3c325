"""Automatic blink detection and reconstruction of pupil data."""

import abc
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.signal import windows

from pupilrecon.core import computations, config, models

logger = config.get_logger()


@dataclass
class ReconstructionResult:
    """Data class holding the output of an automatic reconstruction.

    Attributes:
        velocity: Velocity of the smoothed pupil trace.
        blink_onset: The detected start of each blink.
        blink_offset: The detected end of each blink.
        reconstructed: The pupil trace with blinks interpolated.
        resampled: The pupil trace at the algorithm's working rate, before any
            blink was reconstructed. Optional.
    """

    velocity: models.TimeSeries
    blink_onset: models.BlinkMarkers
    blink_offset: models.BlinkMarkers
    reconstructed: models.TimeSeries
    resampled: Optional[models.TimeSeries] = None


class AbstractReconstructionAlgorithm(abc.ABC):
    """Abstract class defining the interface of automatic reconstruction methods."""

    @abc.abstractmethod
    def reconstruct(
        self, raw: models.TimeSeries, filter_config: models.FilterConfiguration
    ) -> ReconstructionResult:
        """The reconstruction method must contain a reconstruct function.

        The function takes the raw pupil series and the session's filter configuration
        and must be deterministic: the same inputs always give the same result. It
        must not modify the raw series.
        """
        pass


class VelocityBlinkReconstruction(AbstractReconstructionAlgorithm):
    """Detects blinks from the velocity of the pupil trace and interpolates them.

    Pupil size drops quickly as the eyelid closes and recovers quickly as it opens.
    Starting from every run of missing samples, the onset is moved back for as long
    as the velocity stays below the negative threshold, and the offset is moved
    forward for as long as it stays above the positive threshold. The samples from
    onset to offset are then replaced by a straight line.

    Attributes:
        min_valid_value: Samples at or below this value are treated as missing.
            Eye trackers commonly report a pupil size of 0 during a blink.
        max_search_seconds: Longest distance the onset or offset may be moved away
            from a run of missing samples.
    """

    def __init__(
        self, min_valid_value: float = 0.0, max_search_seconds: float = 0.5
    ) -> None:
        """Initializes class.

        Args:
            min_valid_value: Samples at or below this value are treated as missing.
            max_search_seconds: Longest distance, in seconds, the onset or offset may
                be moved away from a run of missing samples.
        """
        self.min_valid_value = min_valid_value
        self.max_search_seconds = max_search_seconds

    def reconstruct(
        self, raw: models.TimeSeries, filter_config: models.FilterConfiguration
    ) -> ReconstructionResult:
        """Runs blink detection and reconstruction.

        Args:
            raw: The raw pupil series.
            filter_config: The parameters of the reconstruction. The data is
                processed at resample_rate * resample_multiplier, with a smoothing
                window of hann_win * resample_multiplier samples.

        Returns:
            The velocity trace, blink markers, and reconstructed trace.

        Raises:
            InvalidRateConversionInput: If the raw series has fewer than two samples.
        """
        rate = filter_config.algorithm_rate
        cleaned = models.TimeSeries(
            time=raw.time,
            values=np.where(raw.values > self.min_valid_value, raw.values, np.nan),
        )
        resampled = computations.resample(cleaned, rate)

        window = max(
            1, int(round(filter_config.hann_win * filter_config.resample_multiplier))
        )
        velocity = _velocity(resampled, window)

        finite_velocity = velocity.values[np.isfinite(velocity.values)]
        spread = float(np.std(finite_velocity)) if finite_velocity.size else 0.0
        max_steps = max(1, int(round(self.max_search_seconds * rate)))

        blinks = _find_blinks(
            resampled.values,
            velocity.values,
            pos_threshold=filter_config.pos_threshold_multiplier * spread,
            neg_threshold=-filter_config.neg_threshold_multiplier * spread,
            max_steps=max_steps,
        )
        reconstructed = _interpolate_blinks(resampled, blinks)
        logger.debug("Detected %d blinks at %.3f Hz.", len(blinks), rate)

        return ReconstructionResult(
            velocity=velocity,
            blink_onset=_markers(
                reconstructed, velocity, [onset for onset, _ in blinks], 0
            ),
            blink_offset=_markers(
                reconstructed, velocity, [offset for _, offset in blinks], -1
            ),
            reconstructed=reconstructed,
            resampled=resampled,
        )


def _velocity(series: models.TimeSeries, window: int) -> models.TimeSeries:
    """Computes the velocity of the Hann-smoothed series.

    Missing samples are bridged linearly before smoothing; the velocity of any
    step that touches a missing sample is NaN.

    Args:
        series: The uniformly sampled pupil series.
        window: Length of the Hann window, in samples.

    Returns:
        The velocity, timestamped at the end of each step.
    """
    values = series.values
    valid = ~np.isnan(values)
    if valid.any():
        filled = np.interp(series.time, series.time[valid], values[valid])
    else:
        filled = np.zeros_like(values)

    kernel = windows.hann(window + 2)[1:-1]
    kernel /= kernel.sum()
    padded = np.pad(filled, (window // 2, window - 1 - window // 2), mode="edge")
    smoothed = np.convolve(padded, kernel, mode="valid")

    velocity = np.diff(smoothed) / np.diff(series.time)
    velocity[np.isnan(values[1:]) | np.isnan(values[:-1])] = np.nan
    return models.TimeSeries(time=series.time[1:], values=velocity)


def _find_blinks(
    values: np.ndarray,
    velocity: np.ndarray,
    pos_threshold: float,
    neg_threshold: float,
    max_steps: int,
) -> List[Tuple[int, int]]:
    """Finds the onset and offset sample of every blink.

    Runs of missing samples that touch either end of the series cannot be bridged
    and are not reported.

    Args:
        values: The uniformly sampled pupil values.
        velocity: velocity[k] is the velocity from sample k to sample k + 1.
        pos_threshold: Velocity above which the pupil is still recovering.
        neg_threshold: Velocity below which the pupil is already closing.
        max_steps: Maximum number of samples the onset or offset may move.

    Returns:
        Inclusive (onset, offset) sample indices, ordered and non-overlapping.
    """
    n_samples = values.size
    blinks: List[Tuple[int, int]] = []
    for first, last in computations.missing_runs(values):
        if first == 0 or last == n_samples - 1:
            continue

        onset = first - 1
        steps = 0
        while onset > 0 and steps < max_steps and velocity[onset - 1] < neg_threshold:
            onset -= 1
            steps += 1

        offset = last + 1
        steps = 0
        while (
            offset < n_samples - 1
            and steps < max_steps
            and velocity[offset] > pos_threshold
        ):
            offset += 1
            steps += 1

        if blinks and onset <= blinks[-1][1]:
            previous_onset, previous_offset = blinks.pop()
            onset, offset = previous_onset, max(offset, previous_offset)
        blinks.append((onset, offset))
    return blinks


def _interpolate_blinks(
    series: models.TimeSeries, blinks: Sequence[Tuple[int, int]]
) -> models.TimeSeries:
    """Replaces every blink by a line between its onset and offset samples."""
    values = series.values.copy()
    for onset, offset in blinks:
        span = slice(onset, offset + 1)
        values[span] = np.interp(
            series.time[span],
            series.time[[onset, offset]],
            values[[onset, offset]],
        )
    return models.TimeSeries(time=series.time.copy(), values=values)


def _markers(
    series: models.TimeSeries,
    velocity: models.TimeSeries,
    indices: Sequence[int],
    velocity_shift: int,
) -> models.BlinkMarkers:
    """Collects the pupil and velocity coordinates of blink markers.

    Args:
        series: The pupil trace the markers index into.
        velocity: The velocity trace.
        indices: Sample indices of the markers.
        velocity_shift: Offset from a sample index to its velocity index.

    Returns:
        The blink markers.
    """
    sample_index = np.asarray(indices, dtype=int)
    velocity_index = np.clip(
        sample_index + velocity_shift, 0, max(len(velocity) - 1, 0)
    )
    return models.BlinkMarkers(
        time=series.time[sample_index],
        values=series.values[sample_index],
        velocity_time=velocity.time[velocity_index],
        velocity=velocity.values[velocity_index],
    )

"""Internal data model."""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from pupilrecon.core import config, exceptions

logger = config.get_logger()

DERIVED_FIELDS = (
    "output",
    "reconstructed",
    "velocity",
    "blink_onset",
    "blink_offset",
    "filter_config",
)


def _as_float_vector(value: Any) -> np.ndarray:
    """Coerces array-likes into a 1-D float64 array."""
    array = np.asarray(value, dtype=np.float64)
    if array.ndim == 0:
        raise ValueError("Expected a 1-D array, got a scalar.")
    if array.ndim != 1:
        raise ValueError(f"Expected a 1-D array, got {array.ndim} dimensions.")
    return array


class TimeSeries(BaseModel):
    """Samples paired with their timestamps, NaN marks a missing sample."""

    time: np.ndarray
    values: np.ndarray

    class Config:
        """Config to allow for ndarray as input."""

        arbitrary_types_allowed = True

    @field_validator("time", "values", mode="before")
    def validate_vector(cls, v: Any) -> np.ndarray:
        """Convert the input to a 1-D float64 array.

        Args:
            cls: The class.
            v: The array-like to convert.

        Returns:
            v: The input as a float64 numpy array.

        Raises:
            ValueError: If the input is not one dimensional.
        """
        return _as_float_vector(v)

    @model_validator(mode="after")
    def validate_time(self) -> "TimeSeries":
        """Validate the timestamps.

        Check that time and values have the same length, and that the timestamps are
        finite and strictly increasing.

        Returns:
            The validated time series.

        Raises:
            ValueError: If the lengths differ, or the timestamps are not finite and
                strictly increasing.
        """
        if self.time.shape != self.values.shape:
            raise ValueError(
                f"time ({self.time.size}) and values ({self.values.size}) "
                "must have the same length"
            )
        if not np.all(np.isfinite(self.time)):
            raise ValueError("Timestamps must be finite")
        if np.any(np.diff(self.time) <= 0):
            raise ValueError("Timestamps must be strictly increasing")
        return self

    @classmethod
    def empty(cls) -> "TimeSeries":
        """Creates a time series without samples."""
        return cls(time=np.array([]), values=np.array([]))

    def __len__(self) -> int:
        """Number of samples."""
        return int(self.time.size)

    @property
    def is_empty(self) -> bool:
        """True when the series holds no samples."""
        return self.time.size == 0

    @property
    def missing(self) -> np.ndarray:
        """Boolean mask of the missing samples."""
        return np.isnan(self.values)

    def copy(self) -> "TimeSeries":  # type: ignore[override]
        """Returns a copy that shares no memory with this series."""
        return TimeSeries(time=self.time.copy(), values=self.values.copy())

    def equals(self, other: Optional["TimeSeries"]) -> bool:
        """Exact comparison of two series, NaN placement included."""
        if other is None:
            return False
        return np.array_equal(self.time, other.time) and np.array_equal(
            self.values, other.values, equal_nan=True
        )

    def arrays(self) -> Dict[str, np.ndarray]:
        """The underlying arrays, keyed by field name."""
        return {"time": self.time, "values": self.values}


class BlinkMarkers(BaseModel):
    """Detected blink transition points.

    Every marker has a coordinate on the pupil trace (time, values) and one on the
    velocity trace (velocity_time, velocity).
    """

    time: np.ndarray
    values: np.ndarray
    velocity_time: np.ndarray
    velocity: np.ndarray

    class Config:
        """Config to allow for ndarray as input."""

        arbitrary_types_allowed = True

    @field_validator("time", "values", "velocity_time", "velocity", mode="before")
    def validate_vector(cls, v: Any) -> np.ndarray:
        """Convert the input to a 1-D float64 array."""
        return _as_float_vector(v)

    @model_validator(mode="after")
    def validate_lengths(self) -> "BlinkMarkers":
        """Validate that every coordinate array has one entry per marker.

        Raises:
            ValueError: If the array lengths differ.
        """
        sizes = {
            self.time.size,
            self.values.size,
            self.velocity_time.size,
            self.velocity.size,
        }
        if len(sizes) != 1:
            raise ValueError("All blink marker arrays must have the same length")
        return self

    @classmethod
    def empty(cls) -> "BlinkMarkers":
        """Creates a marker set without markers."""
        return cls(
            time=np.array([]),
            values=np.array([]),
            velocity_time=np.array([]),
            velocity=np.array([]),
        )

    def __len__(self) -> int:
        """Number of markers."""
        return int(self.time.size)

    @property
    def is_empty(self) -> bool:
        """True when no markers are present."""
        return self.time.size == 0

    def copy(self) -> "BlinkMarkers":  # type: ignore[override]
        """Returns a copy that shares no memory with these markers."""
        return BlinkMarkers(**{k: v.copy() for k, v in self.arrays().items()})

    def equals(self, other: Optional["BlinkMarkers"]) -> bool:
        """Exact comparison of two marker sets, NaN placement included."""
        if other is None:
            return False
        return all(
            np.array_equal(mine, theirs, equal_nan=True)
            for mine, theirs in zip(self.arrays().values(), other.arrays().values())
        )

    def arrays(self) -> Dict[str, np.ndarray]:
        """The underlying arrays, keyed by field name."""
        return {
            "time": self.time,
            "values": self.values,
            "velocity_time": self.velocity_time,
            "velocity": self.velocity,
        }


class FilterConfiguration(BaseModel):
    """Parameters of the automatic reconstruction for one session.

    Instances are immutable; every parameter edit builds a new configuration with
    `with_updates`.

    Attributes:
        hann_win: Hann smoothing window of the velocity trace, in samples at the
            resampling rate.
        resample_rate: Sampling rate of the output, in Hz.
        resample_multiplier: Applied to the resampling rate and the smoothing window
            before running the algorithm. Values above 1 upsample the pupil data.
        pos_threshold_multiplier: Scales the velocity threshold used to find blink
            offsets. Smaller values delay the offset.
        neg_threshold_multiplier: Scales the velocity threshold used to find blink
            onsets. Smaller values advance the onset.
        session_index: 1-based index of the session this configuration belongs to.
    """

    hann_win: int = Field(11, gt=0)
    resample_rate: float = Field(120.0, gt=0, allow_inf_nan=False)
    resample_multiplier: float = Field(1.0, gt=0, allow_inf_nan=False)
    pos_threshold_multiplier: float = Field(1.0, allow_inf_nan=False)
    neg_threshold_multiplier: float = Field(1.0, allow_inf_nan=False)
    session_index: int = Field(..., ge=1)

    class Config:
        """Configurations are value objects."""

        frozen = True
        extra = "forbid"

    def with_updates(self, **changes: Any) -> "FilterConfiguration":
        """Builds a new configuration with some parameters replaced.

        Args:
            **changes: The parameters to replace, by name.

        Returns:
            A new, validated configuration.

        Raises:
            InvalidFilterConfiguration: If a parameter is unknown or a value is
                invalid.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise exceptions.InvalidFilterConfiguration(
                f"Unknown filter parameter(s): {sorted(unknown)}."
            )
        try:
            return FilterConfiguration.model_validate(
                {**self.model_dump(), **changes}
            )
        except pydantic.ValidationError as exc_info:
            raise exceptions.InvalidFilterConfiguration(
                f"Invalid filter parameters {changes}: {exc_info}"
            ) from exc_info

    @property
    def algorithm_rate(self) -> float:
        """Rate, in Hz, at which the automatic algorithm works."""
        return self.resample_rate * self.resample_multiplier


class SessionRecord(BaseModel):
    """One subject/session recording and its reconstruction artifacts.

    The raw series is set once at load time and must not be mutated afterwards.
    """

    raw: TimeSeries
    label: Optional[str] = None
    filter_config: Optional[FilterConfiguration] = None
    undo_config: Optional[FilterConfiguration] = None
    resampled: Optional[TimeSeries] = None
    velocity: Optional[TimeSeries] = None
    blink_onset: Optional[BlinkMarkers] = None
    blink_offset: Optional[BlinkMarkers] = None
    reconstructed: Optional[TimeSeries] = None
    output: Optional[TimeSeries] = None
    manual_changes: bool = False
    exclude: bool = False

    class Config:
        """Re-validate fields when they are replaced."""

        validate_assignment = True

    @field_validator("raw")
    def validate_raw_not_empty(cls, v: TimeSeries) -> TimeSeries:
        """Validate that the raw pupil series has samples.

        Raises:
            ValueError: If the raw series is empty.
        """
        if v.is_empty:
            raise ValueError("raw pupil series must not be empty")
        return v


class SessionCollection(BaseModel):
    """Ordered sessions that are edited and persisted together."""

    sessions: List[SessionRecord] = Field(..., min_length=1)

    def __len__(self) -> int:
        """Number of sessions."""
        return len(self.sessions)

    def session(self, index: int) -> SessionRecord:
        """Returns the session at a 1-based index."""
        if not 1 <= index <= len(self.sessions):
            raise IndexError(f"Session index {index} is out of range.")
        return self.sessions[index - 1]

    @classmethod
    def from_records(
        cls,
        records: Union[
            "SessionCollection", Sequence[Union[SessionRecord, Mapping[str, Any]]]
        ],
    ) -> "SessionCollection":
        """Builds and validates a collection.

        Args:
            records: An existing collection, or session records or mappings with at
                least a 'raw' entry.

        Returns:
            The validated collection.

        Raises:
            InvalidSessionRecord: If the collection is empty or a record is malformed.
        """
        if isinstance(records, SessionCollection):
            return records
        if not records:
            raise exceptions.InvalidSessionRecord("The session collection is empty.")

        sessions = []
        for index, record in enumerate(records, start=1):
            if isinstance(record, SessionRecord):
                sessions.append(record)
                continue
            if not isinstance(record, Mapping) or record.get("raw") is None:
                raise exceptions.InvalidSessionRecord(
                    f"Session {index} has no raw pupil series."
                )
            try:
                sessions.append(SessionRecord.model_validate(record))
            except pydantic.ValidationError as exc_info:
                raise exceptions.InvalidSessionRecord(
                    f"Session {index} is invalid: {exc_info}"
                ) from exc_info
        logger.debug("Validated a collection of %d sessions.", len(sessions))
        return cls(sessions=sessions)

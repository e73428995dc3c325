"""Manual correction of reconstructed pupil data."""

import abc
from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Tuple

import numpy as np

from pupilrecon.core import config, models

logger = config.get_logger()


@dataclass
class EditResult:
    """Data class returned by a manual editor.

    Attributes:
        accepted: True if the edits should replace the reconstructed trace.
        edited: The edited trace. Ignored when the edit was discarded.
    """

    accepted: bool
    edited: Optional[models.TimeSeries] = None


class AbstractManualEditor(abc.ABC):
    """Abstract class defining the interface for manual editors."""

    @abc.abstractmethod
    def edit(self, reconstructed: models.TimeSeries) -> EditResult:
        """The editor must contain an edit function.

        The function receives a copy of the session's reconstructed trace and
        returns whether the user accepted the edits, along with the edited trace.
        """
        pass


class IntervalEditor(AbstractManualEditor):
    """Applies scripted corrections to time intervals of a reconstructed trace.

    Attributes:
        intervals: The (start, end) time intervals to correct, bounds included.
        mode: 'interpolate' bridges each interval with a line drawn from the valid
            samples around it. 'remove' marks the samples of each interval missing.
    """

    def __init__(
        self,
        intervals: Sequence[Tuple[float, float]],
        mode: Literal["interpolate", "remove"] = "interpolate",
    ) -> None:
        """Initializes class.

        Args:
            intervals: The (start, end) time intervals to correct.
            mode: Either 'interpolate' or 'remove'.

        Raises:
            ValueError: If the mode is unknown or an interval ends before it starts.
        """
        if mode not in ("interpolate", "remove"):
            raise ValueError(
                f"Invalid edit mode: {mode}. Choose 'interpolate' or 'remove'."
            )
        for start, end in intervals:
            if end < start:
                raise ValueError(f"Interval ({start}, {end}) ends before it starts.")
        self.intervals = list(intervals)
        self.mode = mode

    def edit(self, reconstructed: models.TimeSeries) -> EditResult:
        """Corrects the intervals.

        Args:
            reconstructed: The trace to correct.

        Returns:
            The corrected trace. Not accepted when there was nothing to correct.
        """
        if not self.intervals:
            logger.debug("No intervals given, discarding the edit.")
            return EditResult(accepted=False)

        selected = np.zeros(len(reconstructed), dtype=bool)
        for start, end in self.intervals:
            selected |= (reconstructed.time >= start) & (reconstructed.time <= end)

        values = reconstructed.values.copy()
        if self.mode == "remove":
            values[selected] = np.nan
        else:
            anchors = ~selected & ~reconstructed.missing
            if not anchors.any():
                logger.warning("No valid samples around the intervals to interpolate.")
                return EditResult(accepted=False)
            values[selected] = np.interp(
                reconstructed.time[selected],
                reconstructed.time[anchors],
                reconstructed.values[anchors],
            )

        logger.debug(
            "Edited %d samples in %d intervals.", selected.sum(), len(self.intervals)
        )
        return EditResult(
            accepted=True,
            edited=models.TimeSeries(time=reconstructed.time.copy(), values=values),
        )

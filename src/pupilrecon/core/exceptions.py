"""Custom exceptions for pupilrecon."""

import logging
from typing import Any, Sequence

from pupilrecon.core import config

logger = config.get_logger()


class LoggedException(Exception):
    """Base class that automatically logs messages."""

    log_level = logging.ERROR

    def __init__(self, message: str) -> None:
        """Initialize a new instance of the LoggedException class.

        Args:
            message: The message to display.
        """
        logger.log(self.log_level, message)
        super().__init__(message)


class ChoiceRequired(LoggedException):
    """Base class for outcomes that need an explicit decision from the caller.

    These are not failures; they are logged as warnings and carry the options the
    caller may choose from.
    """

    log_level = logging.WARNING

    def __init__(self, message: str, choices: Sequence[Any]) -> None:
        """Initialize a new instance of the ChoiceRequired class.

        Args:
            message: The message to display.
            choices: The decisions the caller can make to resolve the situation.
        """
        self.choices = tuple(choices)
        super().__init__(message)


class InvalidRateConversionInput(LoggedException):
    """The resampling rate is not positive or the series is too short."""

    pass


class InvalidNavigationInput(LoggedException):
    """A navigation target could not be interpreted as a session index."""

    log_level = logging.WARNING


class InvalidSessionRecord(LoggedException):
    """A session record in the input collection is structurally invalid."""

    pass


class InvalidFilterConfiguration(LoggedException):
    """A filter parameter edit was rejected."""

    log_level = logging.WARNING


class ResolutionRequired(ChoiceRequired):
    """A partially processed session must be skipped or re-run by the caller."""

    def __init__(self, index: int, choices: Sequence[Any]) -> None:
        """Initialize a new instance of the ResolutionRequired class.

        Args:
            index: The 1-based index of the ambiguous session.
            choices: The available resolutions.
        """
        self.index = index
        super().__init__(
            f"Session {index} is missing some required fields. "
            "Skip or re-run automated artifact removal?",
            choices,
        )


class UnsavedChangesOnClose(ChoiceRequired):
    """Closing the workflow would discard unsaved changes."""

    pass


class UnsavedChangesOnLoad(ChoiceRequired):
    """Loading new data would discard unsaved changes."""

    pass


class ManualChangesPending(ChoiceRequired):
    """Re-running the automatic algorithm would undo manual changes."""

    pass


class NothingToUndo(LoggedException):
    """The session has no previous filter configuration to restore."""

    log_level = logging.WARNING


class PersistenceFailure(LoggedException):
    """Writing or reading a session collection failed."""

    pass


class InvalidFileTypeError(LoggedException):
    """pupilrecon did not expect this file extension."""

    pass


class InvalidWorkflowState(LoggedException):
    """The requested operation is not available in the current workflow state."""

    pass


class InvalidDecision(LoggedException):
    """A decision passed to resolve a prompt is not one of the offered choices."""

    log_level = logging.WARNING

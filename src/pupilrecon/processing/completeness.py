"""Classify how far a session has been through reconstruction."""

import enum
from typing import List

from pupilrecon.core import models


class Completeness(str, enum.Enum):
    """Processing state of a session's derived fields."""

    NOT_STARTED = "not_started"
    COMPLETE = "complete"
    AMBIGUOUS = "ambiguous"


def is_populated(session: models.SessionRecord, field_name: str) -> bool:
    """Checks that a field of the session exists and holds data.

    Args:
        session: The session to inspect.
        field_name: Name of the session attribute.

    Returns:
        False when the field is absent or is an empty series, True otherwise.
        Blink markers, even without any marker, and a filter configuration count
        as populated as soon as they are present.
    """
    value = getattr(session, field_name, None)
    if value is None:
        return False
    if isinstance(value, models.TimeSeries):
        return not value.is_empty
    return True


def populated_fields(session: models.SessionRecord) -> List[str]:
    """Lists the derived fields of the session that hold data."""
    return [name for name in models.DERIVED_FIELDS if is_populated(session, name)]


def evaluate(session: models.SessionRecord) -> Completeness:
    """Classifies a session by its derived fields.

    A series that exists but is empty is treated like an absent one.

    Args:
        session: The session to classify.

    Returns:
        NOT_STARTED if none of the derived fields hold data, COMPLETE if all of them
        do, and AMBIGUOUS otherwise.
    """
    n_populated = len(populated_fields(session))
    if n_populated == 0:
        return Completeness.NOT_STARTED
    if n_populated == len(models.DERIVED_FIELDS):
        return Completeness.COMPLETE
    return Completeness.AMBIGUOUS

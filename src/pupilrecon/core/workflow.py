"""State machine driving the review of a session collection.

The workflow owns the session collection for the duration of a run. Callers drive
it with discrete commands (load, navigate, edit parameters, apply, undo, edit by
hand, tag for exclusion, save, close); every command either returns a read-only
view of the active session or raises one of the exceptions in
pupilrecon.core.exceptions, after which the workflow is left in its prior state.
"""

import enum
import math
import numbers
import pathlib
from typing import Any, Mapping, Optional, Sequence, Union

import pydantic

from pupilrecon.core import config, exceptions, models, orchestrator
from pupilrecon.io.readers import readers
from pupilrecon.io.writers import writers
from pupilrecon.processing import blinks, completeness, editing

logger = config.get_logger()

CollectionSource = Union[
    models.SessionCollection,
    Sequence[Union[models.SessionRecord, Mapping[str, Any]]],
    pathlib.Path,
    str,
]


class WorkflowState(str, enum.Enum):
    """States of the session workflow."""

    AWAITING_DATA = "awaiting_data"
    READY = "ready"
    EDITING = "editing"
    SAVING = "saving"
    CLOSED = "closed"


class Direction(str, enum.Enum):
    """Relative navigation targets."""

    BACK = "back"
    NEXT = "next"


class Decision(str, enum.Enum):
    """Answers to a prompt about unsaved or manual changes."""

    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


class SessionView(pydantic.BaseModel):
    """Read-only snapshot of the active session and of the workflow around it.

    The series are copies with write protection; changing the collection is only
    possible through the workflow's commands.
    """

    index: int
    session_count: int
    state: WorkflowState
    dirty: bool
    completeness: completeness.Completeness
    label: Optional[str] = None
    filter_config: Optional[models.FilterConfiguration] = None
    pending_config: Optional[models.FilterConfiguration] = None
    undo_config: Optional[models.FilterConfiguration] = None
    exclude: bool = False
    manual_changes: bool = False
    raw: models.TimeSeries
    resampled: Optional[models.TimeSeries] = None
    velocity: Optional[models.TimeSeries] = None
    blink_onset: Optional[models.BlinkMarkers] = None
    blink_offset: Optional[models.BlinkMarkers] = None
    reconstructed: Optional[models.TimeSeries] = None
    output: Optional[models.TimeSeries] = None
    destination: Optional[pathlib.Path] = None

    class Config:
        """Views cannot be changed."""

        frozen = True
        arbitrary_types_allowed = True


class SessionWorkflow:
    """Navigates, edits and saves a collection of sessions.

    Attributes:
        orchestrator: Brings each session up to date when it becomes active.
        editor: The default manual editor.
        state: The current workflow state.
        collection: The loaded sessions, None until data is loaded.
        index: 1-based index of the active session.
        dirty: True when there are changes that have not been saved.
        destination: The file the collection is saved to.
        pending_config: Parameter edits that have not been applied yet.
    """

    def __init__(
        self,
        algorithm: Optional[blinks.AbstractReconstructionAlgorithm] = None,
        editor: Optional[editing.AbstractManualEditor] = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Initializes class.

        Args:
            algorithm: The automatic reconstruction algorithm. Defaults to
                VelocityBlinkReconstruction.
            editor: The manual editor used by edit_session when none is given.
            defaults: Filter parameters for sessions that have no configuration.
        """
        self.orchestrator = orchestrator.ReconstructionOrchestrator(
            algorithm=algorithm, defaults=defaults
        )
        self.editor = editor
        self.state = WorkflowState.AWAITING_DATA
        self.collection: Optional[models.SessionCollection] = None
        self.index = 1
        self.dirty = False
        self.destination: Optional[pathlib.Path] = None
        self.pending_config: Optional[models.FilterConfiguration] = None

    @property
    def session(self) -> models.SessionRecord:
        """The active session."""
        if self.collection is None:
            raise exceptions.InvalidWorkflowState("No session collection is loaded.")
        return self.collection.session(self.index)

    @property
    def session_count(self) -> int:
        """Number of sessions in the loaded collection."""
        return len(self.collection) if self.collection is not None else 0

    def load(
        self,
        collection: CollectionSource,
        destination: Optional[Union[pathlib.Path, str]] = None,
        resolution: Optional[orchestrator.Resolution] = None,
        discard_unsaved: bool = False,
    ) -> SessionView:
        """Loads a collection and activates its first session.

        Args:
            collection: The sessions, or the file to read them from. A saved
                collection (.npz) also becomes the default save destination.
            destination: The file to save the collection to.
            resolution: The decision to use if the first session is partially
                processed.
            discard_unsaved: Confirms that unsaved changes to the current collection
                may be discarded.

        Returns:
            The view of the first session.

        Raises:
            UnsavedChangesOnLoad: If there are unsaved changes and discard_unsaved
                is False.
            InvalidSessionRecord: If the collection is structurally invalid.
            ResolutionRequired: If the first session is partially processed and no
                resolution was given. Nothing is loaded.
        """
        if self.state not in (WorkflowState.AWAITING_DATA, WorkflowState.READY):
            raise exceptions.InvalidWorkflowState(
                f"Cannot load data while the workflow is {self.state.value}."
            )
        if self.dirty and not discard_unsaved:
            raise exceptions.UnsavedChangesOnLoad(
                "Loading new data will discard any unsaved changes.",
                choices=(Decision.DISCARD, Decision.CANCEL),
            )

        if isinstance(collection, (str, pathlib.Path)):
            source = pathlib.Path(collection)
            new_collection = readers.read_collection(source)
            if destination is None and source.suffix == writers.COLLECTION_FILE_TYPE:
                destination = source
        else:
            new_collection = models.SessionCollection.from_records(collection)

        self.orchestrator.process(new_collection.session(1), 1, resolution=resolution)

        self.collection = new_collection
        self.index = 1
        self.dirty = False
        self.pending_config = None
        self.destination = (
            pathlib.Path(destination) if destination is not None else None
        )
        self.state = WorkflowState.READY
        logger.info("Loaded a collection of %d sessions.", len(new_collection))
        return self.view()

    def cancel_load(self) -> WorkflowState:
        """Closes a workflow that never received data."""
        if self.state != WorkflowState.AWAITING_DATA:
            raise exceptions.InvalidWorkflowState(
                f"Cannot cancel loading while the workflow is {self.state.value}."
            )
        self.state = WorkflowState.CLOSED
        return self.state

    def navigate(
        self,
        target: Union[Direction, str, int, float],
        resolution: Optional[orchestrator.Resolution] = None,
    ) -> SessionView:
        """Activates another session.

        Args:
            target: 'back', 'next', or a 1-based session index. Indices are clamped
                to the collection; numeric strings and integral floats are accepted.
            resolution: The decision to use if the target session is partially
                processed.

        Returns:
            The view of the new active session.

        Raises:
            InvalidNavigationInput: If the target is not an integer. The active
                session does not change.
            ResolutionRequired: If the target session is partially processed and no
                resolution was given. The active session does not change.
        """
        self._require_ready()
        direction = _parse_direction(target)
        if direction == Direction.BACK:
            new_index = max(self.index - 1, 1)
        elif direction == Direction.NEXT:
            new_index = min(self.index + 1, self.session_count)
        else:
            new_index = self._parse_index(target)

        self.orchestrator.process(
            self.collection.session(new_index),  # type: ignore[union-attr]
            new_index,
            resolution=resolution,
        )
        self.index = new_index
        self.pending_config = None
        logger.debug("Active session is now %d.", new_index)
        return self.view()

    def set_filter_config(self, **changes: Any) -> SessionView:
        """Edits filter parameters without applying them.

        Args:
            **changes: The parameters to change, by name.

        Returns:
            The view of the active session, with the edits in pending_config.

        Raises:
            InvalidFilterConfiguration: If a parameter is unknown or invalid. Earlier
                edits are kept.
        """
        self._require_ready()
        if "session_index" in changes:
            raise exceptions.InvalidFilterConfiguration(
                "session_index is set by the workflow and cannot be edited."
            )
        base = self.pending_config or self.session.filter_config
        if base is None:
            raise exceptions.InvalidWorkflowState(
                f"Session {self.index} has no filter configuration to edit."
            )
        self.pending_config = base.with_updates(**changes)
        self.dirty = True
        return self.view()

    def apply_filter(self, discard_manual_changes: bool = False) -> SessionView:
        """Re-runs the automatic algorithm with the edited parameters.

        The configuration in use before is kept for a single undo.

        Args:
            discard_manual_changes: Confirms that manual edits of the session may be
                overwritten.

        Returns:
            The view of the active session.

        Raises:
            ManualChangesPending: If the session was edited by hand and
                discard_manual_changes is False.
        """
        self._require_ready()
        self._check_manual_changes(discard_manual_changes)
        new_config = self.pending_config or self.session.filter_config
        self.orchestrator.process(self.session, self.index, config=new_config)
        self.pending_config = None
        self.dirty = True
        return self.view()

    def undo_filter(self, discard_manual_changes: bool = False) -> SessionView:
        """Restores the previously applied parameters and re-runs the algorithm.

        Args:
            discard_manual_changes: Confirms that manual edits of the session may be
                overwritten.

        Returns:
            The view of the active session.

        Raises:
            ManualChangesPending: If the session was edited by hand and
                discard_manual_changes is False.
            NothingToUndo: If the session has no previous configuration.
        """
        self._require_ready()
        self._check_manual_changes(discard_manual_changes)
        self.orchestrator.undo(self.session, self.index)
        self.pending_config = None
        self.dirty = True
        return self.view()

    def edit_session(
        self, editor: Optional[editing.AbstractManualEditor] = None
    ) -> SessionView:
        """Hands the reconstructed series of the active session to a manual editor.

        Accepted edits replace the reconstructed series and the output is
        recomputed. Discarded edits leave the session untouched.

        Args:
            editor: The editor to use. Defaults to the workflow's editor.

        Returns:
            The view of the active session.

        Raises:
            InvalidWorkflowState: If no editor is available. Also raised when
                the session has no reconstructed series.
        """
        self._require_ready()
        editor = editor if editor is not None else self.editor
        if editor is None:
            raise exceptions.InvalidWorkflowState("No manual editor is configured.")
        reconstructed = self.session.reconstructed
        if reconstructed is None:
            raise exceptions.InvalidWorkflowState(
                f"Session {self.index} has no reconstructed series to edit."
            )

        self.state = WorkflowState.EDITING
        try:
            result = editor.edit(reconstructed.copy())
        finally:
            self.state = WorkflowState.READY

        if not result.accepted or result.edited is None:
            logger.info("Manual edit of session %d discarded.", self.index)
            return self.view()

        self.orchestrator.apply_manual_edit(self.session, result.edited)
        self.dirty = True
        logger.info("Manual edit of session %d accepted.", self.index)
        return self.view()

    def set_exclude_tag(self, exclude: bool) -> SessionView:
        """Tags or untags the active session for exclusion."""
        self._require_ready()
        self.session.exclude = bool(exclude)
        self.dirty = True
        return self.view()

    def save(self) -> SessionView:
        """Saves the collection to its destination.

        Raises:
            PersistenceFailure: If no destination is known or the file could not be
                written. Unsaved changes are kept.
        """
        self._require_ready()
        if self.destination is None:
            raise exceptions.PersistenceFailure(
                "No destination chosen for the collection, use save_as."
            )
        self._write(self.destination)
        return self.view()

    def save_as(
        self, destination: Optional[Union[pathlib.Path, str]]
    ) -> SessionView:
        """Saves the collection to a new destination.

        Args:
            destination: The .npz file to save to. None cancels the save.

        Returns:
            The view of the active session.

        Raises:
            InvalidFileTypeError: If the destination is not a .npz file.
            PersistenceFailure: If the file could not be written.
        """
        self._require_ready()
        if destination is None:
            logger.info("Save cancelled, unsaved changes are kept.")
            return self.view()
        destination = pathlib.Path(destination)
        writers.validate_collection_path(destination)
        self._write(destination)
        self.destination = destination
        return self.view()

    def close(
        self,
        decision: Optional[Union[Decision, str]] = None,
        destination: Optional[Union[pathlib.Path, str]] = None,
    ) -> WorkflowState:
        """Closes the workflow.

        Args:
            decision: What to do with unsaved changes: save them, discard them, or
                cancel closing. Only needed when there are unsaved changes.
            destination: Where to save when deciding to save and no destination is
                known yet.

        Returns:
            CLOSED, or READY if closing was cancelled.

        Raises:
            UnsavedChangesOnClose: If there are unsaved changes and no decision was
                given.
            InvalidDecision: If the decision is not SAVE, DISCARD or CANCEL.
            PersistenceFailure: If saving failed. The workflow stays open.
        """
        if self.state == WorkflowState.AWAITING_DATA:
            self.state = WorkflowState.CLOSED
        if self.state == WorkflowState.CLOSED:
            return self.state
        self._require_ready()

        if self.dirty:
            if decision is None:
                raise exceptions.UnsavedChangesOnClose(
                    "Closing will discard any unsaved changes!",
                    choices=tuple(Decision),
                )
            decision = _parse_decision(decision)
            if decision == Decision.CANCEL:
                return self.state
            if decision == Decision.SAVE:
                target = destination if destination is not None else self.destination
                if target is None:
                    logger.info("No destination chosen, the workflow stays open.")
                    return self.state
                self.save_as(target)

        self.state = WorkflowState.CLOSED
        logger.info("Workflow closed.")
        return self.state

    def view(self) -> SessionView:
        """Returns a read-only snapshot of the active session."""
        session = self.session
        return SessionView(
            index=self.index,
            session_count=self.session_count,
            state=self.state,
            dirty=self.dirty,
            completeness=completeness.evaluate(session),
            label=session.label,
            filter_config=session.filter_config,
            pending_config=self.pending_config,
            undo_config=session.undo_config,
            exclude=session.exclude,
            manual_changes=session.manual_changes,
            raw=_read_only(session.raw),
            resampled=_read_only(session.resampled),
            velocity=_read_only(session.velocity),
            blink_onset=_read_only(session.blink_onset),
            blink_offset=_read_only(session.blink_offset),
            reconstructed=_read_only(session.reconstructed),
            output=_read_only(session.output),
            destination=self.destination,
        )

    def _parse_index(self, target: Any) -> int:
        """Converts a navigation target to a session index within the collection.

        Raises:
            InvalidNavigationInput: If the target is not an integer.
        """
        value: Optional[int] = None
        if isinstance(target, bool):
            value = None
        elif isinstance(target, numbers.Integral):
            value = int(target)
        elif isinstance(target, (numbers.Real, str)):
            try:
                number = float(target.strip() if isinstance(target, str) else target)
            except ValueError:
                number = math.nan
            if math.isfinite(number) and number.is_integer():
                value = int(number)

        if value is None:
            raise exceptions.InvalidNavigationInput(
                f"Session index must be an integer, got {target!r}. "
                f"Staying at session {self.index}."
            )
        return min(max(value, 1), self.session_count)

    def _check_manual_changes(self, discard_manual_changes: bool) -> None:
        if self.session.manual_changes and not discard_manual_changes:
            raise exceptions.ManualChangesPending(
                "Filtering will undo any manual changes made to session "
                f"{self.index}.",
                choices=(Decision.DISCARD, Decision.CANCEL),
            )

    def _write(self, path: pathlib.Path) -> None:
        self.state = WorkflowState.SAVING
        try:
            writers.save_collection(self.collection, path)  # type: ignore[arg-type]
        finally:
            self.state = WorkflowState.READY
        self.dirty = False

    def _require_ready(self) -> None:
        if self.state != WorkflowState.READY:
            raise exceptions.InvalidWorkflowState(
                f"Operation not available while the workflow is {self.state.value}."
            )


def _parse_direction(target: Any) -> Optional[Direction]:
    """Returns the direction a target names, if any."""
    if isinstance(target, str):
        try:
            return Direction(target.strip().lower())
        except ValueError:
            return None
    return None


def _parse_decision(decision: Union[Decision, str]) -> Decision:
    """Returns the decision named by a string or enum member."""
    try:
        return Decision(decision.strip().lower())
    except (AttributeError, ValueError):
        raise exceptions.InvalidDecision(
            f"Invalid decision: {decision}. Choose one of "
            f"{', '.join(choice.value for choice in Decision)}."
        ) from None


def _read_only(
    series: Union[models.TimeSeries, models.BlinkMarkers, None],
) -> Union[models.TimeSeries, models.BlinkMarkers, None]:
    """Copies a series and write-protects the copy."""
    if series is None:
        return None
    frozen = series.copy()
    for array in frozen.arrays().values():
        array.flags.writeable = False
    return frozen

"""Reconstruction of sessions and batch processing of collections."""

import enum
import logging
import pathlib
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional, Union

import pydantic
from rich import progress

from pupilrecon.core import computations, config, exceptions, models
from pupilrecon.io.readers import readers
from pupilrecon.io.writers import writers
from pupilrecon.processing import blinks, completeness

logger = config.get_logger()

SKIP_BACKFILL_SOURCES = ("output", "resampled", "raw")


class Resolution(str, enum.Enum):
    """Caller decisions for a partially processed session."""

    SKIP = "skip"
    RUN = "run"


@dataclass
class ProcessReport:
    """Data class describing what processing did to a session.

    Attributes:
        index: 1-based index of the session.
        completeness: Completeness of the session before processing.
        algorithm_invoked: True if the automatic algorithm ran.
        resolution: The decision used for an ambiguous session, if any.
    """

    index: int
    completeness: completeness.Completeness
    algorithm_invoked: bool
    resolution: Optional[Resolution] = None


class ReconstructionOrchestrator:
    """Decides how each session gets its reconstructed and output series.

    All changes are made on a deep copy of the session and written back only once
    every step succeeded, so a failure leaves the session as it was.

    Attributes:
        algorithm: The automatic reconstruction algorithm.
        defaults: Parameter overrides for configurations synthesized for sessions
            that have none.
    """

    def __init__(
        self,
        algorithm: Optional[blinks.AbstractReconstructionAlgorithm] = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Initializes class.

        Args:
            algorithm: The automatic reconstruction algorithm. Defaults to
                VelocityBlinkReconstruction.
            defaults: Filter parameters that replace the documented defaults when a
                session has no configuration yet.

        Raises:
            InvalidFilterConfiguration: If the defaults are invalid.
        """
        self.algorithm = (
            algorithm if algorithm is not None else blinks.VelocityBlinkReconstruction()
        )
        self.defaults = dict(defaults or {})
        self.default_config(1)

    def default_config(self, index: int) -> models.FilterConfiguration:
        """Builds the default configuration of a session.

        Args:
            index: 1-based index of the session.

        Returns:
            The documented defaults, with any overrides, stamped with the index.
        """
        try:
            return models.FilterConfiguration(**self.defaults, session_index=index)
        except pydantic.ValidationError as exc_info:
            raise exceptions.InvalidFilterConfiguration(
                f"Invalid default filter parameters {self.defaults}: {exc_info}"
            ) from exc_info

    def process(
        self,
        session: models.SessionRecord,
        index: int,
        config: Optional[models.FilterConfiguration] = None,
        resolution: Optional[Resolution] = None,
    ) -> ProcessReport:
        """Brings a session up to date.

        Sessions that were never processed run through the automatic algorithm.
        Complete sessions, and sessions whose reconstruction was edited by hand, are
        not recomputed. Partially processed sessions require a resolution: SKIP keeps
        the existing data and backfills the reconstructed series from output,
        resampled or raw (the first one populated), RUN discards the partial data
        and runs the algorithm. Passing a configuration re-runs the algorithm with
        it regardless of the session state. In every case the output is recomputed
        from the reconstructed series.

        Args:
            session: The session to process, updated in place.
            index: 1-based index of the session in its collection.
            config: New filter configuration to re-run the algorithm with.
            resolution: The decision for a partially processed session.

        Returns:
            A report of what was done.

        Raises:
            ResolutionRequired: If the session is partially processed and no
                resolution was given. The session is not modified.
            InvalidRateConversionInput: If the output cannot be computed. The session
                is not modified.
        """
        state = completeness.evaluate(session)
        manual_edit = (
            config is None
            and session.manual_changes
            and completeness.is_populated(session, "reconstructed")
        )
        if (
            state == completeness.Completeness.AMBIGUOUS
            and config is None
            and resolution is None
            and not manual_edit
        ):
            logger.debug(
                "Session %d has populated fields: %s",
                index,
                completeness.populated_fields(session),
            )
            raise exceptions.ResolutionRequired(index, choices=tuple(Resolution))

        working = session.model_copy(deep=True)
        filter_config = working.filter_config
        if filter_config is None:
            filter_config = self.default_config(index)
        elif filter_config.session_index != index:
            filter_config = filter_config.with_updates(session_index=index)
        working.filter_config = filter_config

        invoked = False
        used_resolution = None
        if config is not None:
            filter_config = config.with_updates(session_index=index)
            working.undo_config = working.filter_config
            working.filter_config = filter_config
            self._run_algorithm(working, filter_config)
            invoked = True
        elif manual_edit:
            logger.debug("Session %d was edited by hand, keeping it.", index)
        elif state == completeness.Completeness.NOT_STARTED:
            self._run_algorithm(working, filter_config)
            invoked = True
        elif state == completeness.Completeness.AMBIGUOUS:
            used_resolution = resolution
            if resolution == Resolution.RUN:
                self._run_algorithm(working, filter_config)
                invoked = True
            else:
                _backfill_reconstructed(working)

        if config is None:
            working.undo_config = working.filter_config

        self.refresh_output(working)
        _commit(session, working)
        logger.debug(
            "Processed session %d (%s), algorithm invoked: %s.", index, state, invoked
        )
        return ProcessReport(
            index=index,
            completeness=state,
            algorithm_invoked=invoked,
            resolution=used_resolution,
        )

    def undo(self, session: models.SessionRecord, index: int) -> ProcessReport:
        """Re-runs the algorithm with the previously committed configuration.

        Only one configuration is kept, so undoing twice gives the same result as
        undoing once.

        Args:
            session: The session to revert, updated in place.
            index: 1-based index of the session in its collection.

        Returns:
            A report of what was done.

        Raises:
            NothingToUndo: If the session has no previous configuration.
        """
        if session.undo_config is None:
            raise exceptions.NothingToUndo(f"Session {index} has nothing to undo.")
        state = completeness.evaluate(session)

        working = session.model_copy(deep=True)
        filter_config = session.undo_config.with_updates(session_index=index)
        working.filter_config = filter_config
        self._run_algorithm(working, filter_config)
        self.refresh_output(working)
        _commit(session, working)
        return ProcessReport(index=index, completeness=state, algorithm_invoked=True)

    def apply_manual_edit(
        self, session: models.SessionRecord, edited: models.TimeSeries
    ) -> None:
        """Replaces the reconstructed series with a manual edit.

        Args:
            session: The session to update in place.
            edited: The edited reconstructed series.
        """
        working = session.model_copy(deep=True)
        working.reconstructed = edited.copy()
        working.manual_changes = True
        self.refresh_output(working)
        _commit(session, working)

    def refresh_output(self, session: models.SessionRecord) -> None:
        """Recomputes the output series from the reconstructed series.

        Args:
            session: The session to update in place.

        Raises:
            InvalidRateConversionInput: If the session has no reconstructed series or
                no configuration.
        """
        if session.reconstructed is None or session.filter_config is None:
            raise exceptions.InvalidRateConversionInput(
                "A reconstructed series and a filter configuration are required to "
                "compute the output."
            )
        session.output = computations.resample(
            session.reconstructed, session.filter_config.resample_rate
        )

    def _run_algorithm(
        self,
        session: models.SessionRecord,
        filter_config: models.FilterConfiguration,
    ) -> None:
        """Replaces the derived series of the session with a fresh reconstruction."""
        result = self.algorithm.reconstruct(session.raw.copy(), filter_config)
        session.resampled = result.resampled
        session.velocity = result.velocity
        session.blink_onset = result.blink_onset
        session.blink_offset = result.blink_offset
        session.reconstructed = result.reconstructed
        session.output = None
        session.manual_changes = False


def _backfill_reconstructed(session: models.SessionRecord) -> None:
    """Fills a missing reconstructed series from the best available series."""
    if completeness.is_populated(session, "reconstructed"):
        return
    for source in SKIP_BACKFILL_SOURCES:
        if completeness.is_populated(session, source):
            logger.debug("Backfilling reconstructed series from %s.", source)
            session.reconstructed = getattr(session, source).copy()
            return


def _commit(session: models.SessionRecord, working: models.SessionRecord) -> None:
    """Copies every field except the raw series from working onto session."""
    for name in type(session).model_fields:
        if name != "raw":
            setattr(session, name, getattr(working, name))


def run(
    input: Union[pathlib.Path, str],
    output: Optional[Union[pathlib.Path, str]] = None,
    export: Optional[Union[pathlib.Path, str]] = None,
    config: Optional[Mapping[str, Any]] = None,
    on_ambiguous: Literal["skip", "run", "leave"] = "skip",
    algorithm: Optional[blinks.AbstractReconstructionAlgorithm] = None,
    verbosity: int = logging.WARNING,
) -> models.SessionCollection:
    """Runs the automatic reconstruction over every session of a collection.

    Sessions that are already complete keep their reconstruction, and only their
    output is recomputed. A session that fails is logged and left as it was; the
    remaining sessions are still processed.

    Args:
        input: Path to the collection. Either a saved collection (.npz) or a long
            format table (.csv or .parquet) with 'session', 'time' and 'pupil'
            columns.
        output: Path of the .npz file to save the processed collection to.
        export: Path of a .csv or .parquet file to export the output series to.
        config: Filter parameters for sessions that have no configuration yet.
            Missing parameters use the documented defaults.
        on_ambiguous: What to do with partially processed sessions: 'skip' keeps
            the existing data, 'run' re-runs the algorithm, and 'leave' does not
            touch them.
        algorithm: The automatic reconstruction algorithm. Defaults to
            VelocityBlinkReconstruction.
        verbosity: The logging level for the logger.

    Returns:
        The processed collection.

    Raises:
        ValueError: If on_ambiguous is not a valid option.
        InvalidFileTypeError: If the output or export path has an unsupported
            extension.
    """
    logger.setLevel(verbosity)

    if on_ambiguous not in ("skip", "run", "leave"):
        message = (
            f"Invalid on_ambiguous option: {on_ambiguous}. "
            "Choose: 'skip', 'run', 'leave'."
        )
        logger.error(message)
        raise ValueError(message)

    output = pathlib.Path(output) if output is not None else None
    export = pathlib.Path(export) if export is not None else None
    if output is not None:
        writers.validate_collection_path(output)
    if export is not None:
        writers.validate_export_path(export)

    collection = readers.read_collection(input)
    orchestrator = ReconstructionOrchestrator(algorithm=algorithm, defaults=config)
    resolution = None if on_ambiguous == "leave" else Resolution(on_ambiguous)

    with progress.Progress(
        progress.SpinnerColumn(),
        progress.TextColumn("[progress.description]{task.description}"),
        progress.BarColumn(),
        progress.TaskProgressColumn(),
        console=None,
    ) as progress_bar:
        task = progress_bar.add_task(
            f"[cyan]Reconstructing {len(collection)} sessions...",
            total=len(collection),
        )
        for index, session in enumerate(collection.sessions, start=1):
            try:
                orchestrator.process(session, index, resolution=resolution)
            except exceptions.ResolutionRequired:
                logger.warning("Leaving partially processed session %d as is.", index)
            except (exceptions.LoggedException, ValueError) as e:
                logger.error("Did not process session: %d, Error: %s", index, e)
            progress_bar.update(task, advance=1)

    if output is not None:
        writers.save_collection(collection, output)
    if export is not None:
        writers.export_outputs(collection, export)

    logger.info("Processing for %s completed successfully.", pathlib.Path(input).name)
    return collection

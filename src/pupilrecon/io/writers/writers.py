"""Functions to persist session collections and export their outputs."""

import datetime
import json
import os
import pathlib
from typing import Any, Dict, List, Union

import numpy as np
import polars as pl

from pupilrecon.core import config, exceptions, models

COLLECTION_FILE_TYPE = ".npz"
VALID_EXPORT_FILE_TYPES = (".csv", ".parquet")
FORMAT_VERSION = 1

SERIES_FIELDS = (
    "raw",
    "resampled",
    "velocity",
    "blink_onset",
    "blink_offset",
    "reconstructed",
    "output",
)

logger = config.get_logger()


def array_key(position: int, field_name: str, column: str) -> str:
    """Name of one array of one session inside a saved collection."""
    return f"session{position}__{field_name}__{column}"


def validate_collection_path(path: pathlib.Path) -> None:
    """Validates that a collection would be saved in a supported format.

    Args:
        path: The file the collection will be saved to. Must be a .npz file.

    Raises:
        InvalidFileTypeError: If the path does not end in .npz.
    """
    if path.suffix != COLLECTION_FILE_TYPE:
        raise exceptions.InvalidFileTypeError(
            f"The extension: {path.suffix} is not supported. "
            f"Please save the collection as {COLLECTION_FILE_TYPE}",
        )


def validate_export_path(path: pathlib.Path) -> None:
    """Validates that outputs would be exported in a supported format.

    Args:
        path: The file the outputs will be exported to. Must be a .csv or .parquet
            file.

    Raises:
        InvalidFileTypeError: If the path ends with any extension other than csv or
            parquet.
    """
    if path.suffix not in VALID_EXPORT_FILE_TYPES:
        raise exceptions.InvalidFileTypeError(
            f"The extension: {path.suffix} is not supported. "
            "Please export the outputs as .csv or .parquet",
        )


def save_collection(
    collection: models.SessionCollection, path: Union[pathlib.Path, str]
) -> None:
    """Saves a whole session collection to a single .npz file.

    Every present series is stored with its NaN values, absent series are left
    out, and the remaining session fields are stored as JSON metadata. The file is
    written next to its destination first and then moved into place, so a failed
    save never leaves a truncated collection behind.

    Args:
        collection: The sessions to save.
        path: The .npz file to write.

    Raises:
        InvalidFileTypeError: If the path does not end in .npz.
        PersistenceFailure: If the file could not be written.
    """
    path = pathlib.Path(path)
    validate_collection_path(path)

    arrays: Dict[str, np.ndarray] = {}
    sessions_metadata: List[Dict[str, Any]] = []
    for position, session in enumerate(collection.sessions):
        present = []
        for field_name in SERIES_FIELDS:
            series = getattr(session, field_name)
            if series is None:
                continue
            present.append(field_name)
            for column, array in series.arrays().items():
                arrays[array_key(position, field_name, column)] = array
        sessions_metadata.append(
            {
                "label": session.label,
                "filter_config": _dump_config(session.filter_config),
                "undo_config": _dump_config(session.undo_config),
                "manual_changes": session.manual_changes,
                "exclude": session.exclude,
                "series": present,
            }
        )

    metadata = {
        "format_version": FORMAT_VERSION,
        "pupilrecon_version": config.get_version(),
        "sessions": sessions_metadata,
    }
    arrays["metadata"] = np.array(json.dumps(metadata))

    temporary = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temporary, "wb") as file:
            np.savez_compressed(file, **arrays)
        os.replace(temporary, path)
    except OSError as exc_info:
        if temporary.exists():
            temporary.unlink()
        raise exceptions.PersistenceFailure(
            f"Could not save the collection to {path}: {exc_info}"
        ) from exc_info

    logger.info("Collection of %d sessions saved in: %s", len(collection), path)


def export_outputs(
    collection: models.SessionCollection, path: Union[pathlib.Path, str]
) -> None:
    """Exports the output series of every session as a long format table.

    The table has one row per output sample with the columns 'session', 'label',
    'exclude', 'time' and 'pupil'. Sessions without an output are left out. The
    filter configurations are written to a .json file next to the table.

    Args:
        collection: The sessions to export.
        path: The .csv or .parquet file to write.

    Raises:
        InvalidFileTypeError: If the path has an unsupported extension.
        PersistenceFailure: If no session has an output, or the file could not be
            written.
    """
    path = pathlib.Path(path)
    validate_export_path(path)

    frames = []
    for index, session in enumerate(collection.sessions, start=1):
        if session.output is None:
            logger.warning("Session %d has no output and is not exported.", index)
            continue
        n_samples = len(session.output)
        frames.append(
            pl.DataFrame(
                [
                    pl.Series("session", [index] * n_samples, dtype=pl.Int64),
                    pl.Series("label", [session.label] * n_samples, dtype=pl.String),
                    pl.Series(
                        "exclude", [session.exclude] * n_samples, dtype=pl.Boolean
                    ),
                    pl.Series("time", session.output.time, dtype=pl.Float64),
                    pl.Series("pupil", session.output.values, dtype=pl.Float64),
                ]
            )
        )
    if not frames:
        raise exceptions.PersistenceFailure("No session has an output to export.")

    results_dataframe = pl.concat(frames, how="vertical")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".csv":
            results_dataframe.write_csv(path, separator=",")
        else:
            results_dataframe.write_parquet(path)
    except OSError as exc_info:
        raise exceptions.PersistenceFailure(
            f"Could not export outputs to {path}: {exc_info}"
        ) from exc_info

    logger.info("Outputs exported in: %s", path)
    save_config_as_json(collection, path)


def save_config_as_json(
    collection: models.SessionCollection, output_path: pathlib.Path
) -> None:
    """Save the filter configurations of a collection as a JSON file.

    Args:
        collection: The sessions whose configurations are saved.
        output_path: Path where the data file was saved. The JSON file will use
            the same name but with .json extension.

    Raises:
        PersistenceFailure: If the JSON file could not be written.
    """
    config_data = {
        "processing_time": datetime.datetime.now().isoformat(timespec="seconds"),
        "pupilrecon_version": config.get_version(),
        "sessions": [
            {
                "session": index,
                "label": session.label,
                "exclude": session.exclude,
                "manual_changes": session.manual_changes,
                "filter_config": _dump_config(session.filter_config),
            }
            for index, session in enumerate(collection.sessions, start=1)
        ],
    }

    config_path = output_path.with_suffix(".json")

    try:
        with open(config_path, "w") as f:
            json.dump(config_data, f, indent=4)
    except OSError as exc_info:
        raise exceptions.PersistenceFailure(
            f"Could not save the configuration to {config_path}: {exc_info}"
        ) from exc_info

    logger.debug("Configuration saved in: %s", config_path)


def _dump_config(
    filter_config: Union[models.FilterConfiguration, None],
) -> Union[Dict[str, Any], None]:
    return filter_config.model_dump() if filter_config is not None else None

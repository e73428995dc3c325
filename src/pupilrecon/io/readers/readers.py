"""Functions to read session collections from files."""

import json
import pathlib
import zipfile
from typing import Any, Dict, List, Union

import numpy as np
import polars as pl

from pupilrecon.core import config, exceptions, models
from pupilrecon.io.writers import writers

MARKER_FIELDS = ("blink_onset", "blink_offset")
TABLE_COLUMNS = ("session", "time", "pupil")

logger = config.get_logger()


def read_collection(file_name: Union[pathlib.Path, str]) -> models.SessionCollection:
    """Read a session collection from a file.

    Saved collections (.npz) are restored with all their derived fields. Long format
    tables (.csv, .parquet) with 'session', 'time' and 'pupil' columns give one
    unprocessed session per distinct 'session' value, in order of first appearance.

    Args:
        file_name: The file to read the collection from.

    Returns:
        The validated session collection.

    Raises:
        InvalidFileTypeError: If the file extension is not supported.
        InvalidSessionRecord: If a session is structurally invalid.
        PersistenceFailure: If the file cannot be read.
    """
    path = pathlib.Path(file_name)
    if path.suffix == writers.COLLECTION_FILE_TYPE:
        records = _read_saved_collection(path)
    elif path.suffix in writers.VALID_EXPORT_FILE_TYPES:
        records = _read_table(path)
    else:
        raise exceptions.InvalidFileTypeError(
            f"File type {path.suffix} is not supported."
        )
    logger.debug("Read %d sessions from %s", len(records), path)
    return models.SessionCollection.from_records(records)


def _read_saved_collection(path: pathlib.Path) -> List[Dict[str, Any]]:
    """Reads the session records of a collection written by save_collection."""
    try:
        with np.load(path, allow_pickle=False) as archive:
            metadata = json.loads(str(archive["metadata"]))
            records = []
            for position, session_metadata in enumerate(metadata["sessions"]):
                record: Dict[str, Any] = {
                    "label": session_metadata["label"],
                    "filter_config": session_metadata["filter_config"],
                    "undo_config": session_metadata["undo_config"],
                    "manual_changes": session_metadata["manual_changes"],
                    "exclude": session_metadata["exclude"],
                }
                for field_name in session_metadata["series"]:
                    columns = (
                        ("time", "values", "velocity_time", "velocity")
                        if field_name in MARKER_FIELDS
                        else ("time", "values")
                    )
                    record[field_name] = {
                        column: archive[writers.array_key(position, field_name, column)]
                        for column in columns
                    }
                records.append(record)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile) as exc_info:
        raise exceptions.PersistenceFailure(
            f"Could not read the collection from {path}: {exc_info}"
        ) from exc_info
    return records


def _read_table(path: pathlib.Path) -> List[Dict[str, Any]]:
    """Reads raw pupil sessions from a long format table."""
    try:
        if path.suffix == ".csv":
            data_frame = pl.read_csv(path, null_values=["", "NA", "NaN", "nan"])
        else:
            data_frame = pl.read_parquet(path)
    except (OSError, pl.exceptions.PolarsError) as exc_info:
        raise exceptions.PersistenceFailure(
            f"Could not read {path}: {exc_info}"
        ) from exc_info

    missing_columns = set(TABLE_COLUMNS) - set(data_frame.columns)
    if missing_columns:
        raise exceptions.InvalidSessionRecord(
            f"{path.name} is missing the column(s): {sorted(missing_columns)}."
        )
    if data_frame.is_empty():
        raise exceptions.InvalidSessionRecord(f"{path.name} contains no samples.")

    data_frame = data_frame.with_columns(
        pl.col("time").cast(pl.Float64),
        pl.col("pupil").cast(pl.Float64).fill_null(float("nan")),
    )
    return [
        {
            "label": str(group["session"][0]),
            "raw": {
                "time": group["time"].to_numpy(),
                "values": group["pupil"].to_numpy(),
            },
        }
        for group in (
            frame.sort("time")
            for frame in data_frame.partition_by("session", maintain_order=True)
        )
    ]

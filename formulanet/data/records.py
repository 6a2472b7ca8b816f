"""
Record set handling for formulanet.

Coerces the supported record-set shapes into a pandas DataFrame and loads
record sets from local files.
"""

import pandas as pd
from pathlib import Path
from typing import Any, Mapping, Sequence, Union

from ..core.exceptions import FormulaNetError
from ..utils.logging import get_logger


logger = get_logger(__name__)

Records = Union[pd.DataFrame, Mapping[str, Sequence[Any]], Sequence[Mapping[str, Any]]]


def as_dataframe(records: Records) -> pd.DataFrame:
    """
    Coerce a record set into a DataFrame with a fresh positional index.

    Args:
        records: DataFrame, mapping of column name to values, or a sequence
            of per-record mappings

    Returns:
        DataFrame whose row order matches the input
    """
    if isinstance(records, pd.DataFrame):
        frame = records
    elif isinstance(records, Mapping):
        frame = pd.DataFrame(dict(records))
    elif isinstance(records, Sequence) and not isinstance(records, (str, bytes)):
        frame = pd.DataFrame.from_records(list(records))
    else:
        raise FormulaNetError(
            f"Unsupported record set type: {type(records).__name__}",
            suggestions=[
                "Pass a pandas DataFrame",
                "Pass a dict of column name -> values",
                "Pass a list of dicts, one per record",
            ],
            error_code="RECORDS",
        )

    if frame.columns.duplicated().any():
        duplicated = sorted(set(frame.columns[frame.columns.duplicated()]))
        raise FormulaNetError(
            f"Duplicate field names in record set: {duplicated}",
            error_code="RECORDS",
        )

    return frame.reset_index(drop=True)


def load_records(file_path: Union[str, Path], **read_kwargs) -> pd.DataFrame:
    """
    Load a record set from a CSV, JSON or JSON-lines file.

    Args:
        file_path: Path to the file
        **read_kwargs: Passed through to the pandas reader

    Returns:
        DataFrame of records
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Record file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        frame = pd.read_csv(path, **read_kwargs)
    elif suffix in (".jsonl", ".ndjson"):
        frame = pd.read_json(path, lines=True, **read_kwargs)
    elif suffix == ".json":
        frame = pd.read_json(path, **read_kwargs)
    else:
        raise FormulaNetError(
            f"Unsupported file format: {suffix}",
            suggestions=["Supported formats: .csv, .json, .jsonl"],
            error_code="RECORDS",
        )

    logger.info(f"Loaded {len(frame)} records from {path.name}", fields=len(frame.columns))
    return as_dataframe(frame)

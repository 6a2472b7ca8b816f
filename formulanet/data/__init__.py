"""Record set loading and row splitting for formulanet."""

from .records import as_dataframe, load_records, Records
from .sampling import train_validation_split

__all__ = ["as_dataframe", "load_records", "Records", "train_validation_split"]

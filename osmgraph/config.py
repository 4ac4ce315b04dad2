from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_ROWS_PER_STATEMENT = 4000
DEFAULT_FETCH_BATCH_SIZE = 10_000

# ASCII unit/record separators; free text in OSM tags commonly contains
# ':' (e.g. "name:en") and ',' so neither is safe as a delimiter.
FIELD_SEPARATOR = "\x1f"
RECORD_SEPARATOR = "\x1e"

DEFAULT_ENV_PREFIX = "OSM_DB_"


@dataclass
class LoaderConfig:
    """
    Configuration for the bulk loader and the denormalizing fetch.

    Attributes:
        max_parameters:          Bound-parameter ceiling per statement. None
                                 uses the engine's own limit (999 for SQLite,
                                 65535 for PostgreSQL).
        max_rows_per_statement:  Upper bound on rows per insert regardless of
                                 the parameter ceiling.
        fetch_batch_size:        Rows per batch when reading parents back.
        field_separator:         Delimiter between sub-fields of one child cell.
        record_separator:        Delimiter between child cells of one parent.
    """

    max_parameters: int | None = None
    max_rows_per_statement: int = DEFAULT_MAX_ROWS_PER_STATEMENT
    fetch_batch_size: int = DEFAULT_FETCH_BATCH_SIZE
    field_separator: str = FIELD_SEPARATOR
    record_separator: str = RECORD_SEPARATOR

    def __post_init__(self):
        if self.max_parameters is not None and self.max_parameters < 1:
            raise ValueError(f"max_parameters must be positive, got {self.max_parameters}")
        if self.max_rows_per_statement < 1:
            raise ValueError(
                f"max_rows_per_statement must be positive, got {self.max_rows_per_statement}"
            )
        if self.fetch_batch_size < 1:
            raise ValueError(f"fetch_batch_size must be positive, got {self.fetch_batch_size}")
        for name in ("field_separator", "record_separator"):
            if len(getattr(self, name)) != 1:
                raise ValueError(f"{name} must be a single character")
        if self.field_separator == self.record_separator:
            raise ValueError("field_separator and record_separator must differ")

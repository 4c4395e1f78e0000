"""
Data marshaling between host row tables and R data frames.

Host tables are lists of dicts (one dict per row). Going into R, column names
are sanitized and each column is built as a single typed vector. Coming back,
the R side flattens the frame into plain atomic columns first, so the host
only ever converts logical, integer, double and character vectors.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rbridge.errors import DatasetNotFoundError, EmptyTableError, RConditionError
from rbridge.identifiers import sanitize_names, sanitize_rows

logger = logging.getLogger(__name__)

RowTable = List[Dict[str, Any]]

_INT_MAX = 2**31 - 1
# R reserves the most negative 32-bit integer for NA.
_INT_MIN = -_INT_MAX


@dataclass(frozen=True)
class DatasetDescriptor:
    name: str
    row_count: int
    column_count: int
    summary_text: str


def infer_kind(values: Sequence[Any]) -> str:
    """R vector type for a host column. None is ignored; mixed columns become character."""
    present = [v for v in values if v is not None]
    if not present:
        return "logical"
    if all(isinstance(v, bool) for v in present):
        return "logical"
    if any(isinstance(v, bool) for v in present):
        return "character"
    if all(isinstance(v, int) for v in present):
        if all(_INT_MIN <= v <= _INT_MAX for v in present):
            return "integer"
        return "double"
    if all(isinstance(v, (int, float)) for v in present):
        return "double"
    return "character"


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


class DataMarshaler:
    """Moves tables across the host/R boundary through an RSession."""

    def __init__(self, session, settings=None):
        self.session = session
        self.settings = settings or session.settings

    # -- into R ------------------------------------------------------------

    def load_named_table(self, name: str):
        """R-side data frame for a catalog dataset. Caller releases the handle."""
        try:
            with self.session.vector("character", self.settings.catalog_packages) as packages:
                handle = self.session.call("load_dataset", name, packages)
        except RConditionError as e:
            logger.warning(f"[R-DATA] Loading '{name}' failed: {e.message}")
            raise DatasetNotFoundError(name, f"could not be loaded: {e.message}") from e

        if self.session.is_null(handle):
            self.session.destroy(handle)
            raise DatasetNotFoundError(name)
        logger.info(f"[R-DATA] Loaded dataset '{name}'")
        return handle

    def materialize_inline(self, rows: RowTable):
        """Build an R data frame from host rows. Caller releases the handle.

        Raises EmptyTableError when there is nothing to build.
        """
        if not rows:
            raise EmptyTableError("No inline rows to materialize")
        clean = sanitize_rows(rows)
        names = list(clean[0].keys())
        if not names:
            raise EmptyTableError("Inline rows have no columns")

        columns = []
        try:
            for name in names:
                values = [row[name] for row in clean]
                kind = infer_kind(values)
                if kind == "character":
                    values = [_as_text(v) for v in values]
                columns.append(self.session.vector(kind, values))

            with self.session.named_list(dict(zip(names, columns))) as column_list:
                table = self.session.call("build_table", column_list)
        finally:
            for column in columns:
                self.session.destroy(column)

        logger.info(f"[R-DATA] Materialized inline table: {len(clean)} rows x {len(names)} columns")
        return table

    def synthetic_table(self):
        """The fixed fallback data frame used when no dataset is supplied."""
        return self.session.call("synthetic_table")

    # -- back to the host ----------------------------------------------------

    def project_rows(self, table) -> RowTable:
        """Rows keyed by sanitized column name, the same keys materialize_inline binds."""
        data = self.session.invoke("host_columns", table)
        names = sanitize_names(data["names"] or [])
        columns = data["columns"] or []
        nrow = data["nrow"][0]
        return [{name: column[i] for name, column in zip(names, columns)} for i in range(nrow)]

    def project_summary(self, table) -> str:
        return self.session.invoke("summary_text", table)[0]

    def describe(self, table, name: str) -> DatasetDescriptor:
        row_count, column_count = self.session.invoke("dim", table)
        return DatasetDescriptor(
            name=name,
            row_count=row_count,
            column_count=column_count,
            summary_text=self.project_summary(table),
        )

    def load_named_dataset(self, name: str) -> Tuple[RowTable, str]:
        """Rows and structural summary of a catalog dataset."""
        with self.load_named_table(name) as table:
            rows = self.project_rows(table)
            if not rows:
                raise DatasetNotFoundError(name, "has no rows")
            summary = self.project_summary(table)
        logger.info(f"[R-DATA] Projected '{name}': {len(rows)} rows")
        return rows, summary

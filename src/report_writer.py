"""
Report Writer

This module persists aggregate trace metrics as rows of a cumulative CSV report.
The report file accumulates one row per host per run across independent process
invocations; its header is written exactly once, when the file is new or empty.

Each report schema version fixes a column set and a float format. A file only
ever holds rows of the schema named by its header.
"""

import logging
import os
from typing import Dict, List, Any, Iterable, Optional, Tuple, Union
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

try:
    from .trace_metrics import AggregateMetrics, HostMetrics
except ImportError:
    from trace_metrics import AggregateMetrics, HostMetrics


UNDEFINED_MARKER = 'undefined'
DEFAULT_RUN_ID_PREFIX = 'extk-'


class ReportPersistenceError(Exception):
    """Raised when report rows cannot be appended to the report file."""


class ReportSchemaMismatchError(ReportPersistenceError):
    """Raised when the report file holds a header of another schema."""


@dataclass
class ReportConfig:
    """Configuration of the cumulative report."""
    report_path: str = 'execution_output.csv'
    schema_version: str = 'v2'
    run_id_prefix: str = DEFAULT_RUN_ID_PREFIX
    host_filter: Optional[List[str]] = None  # None means every platform host


@dataclass(frozen=True)
class ReportColumn:
    """A report column and the row value it is filled from."""
    name: str
    source: str
    dtype: str  # 'object', 'int64' or 'float64'


@dataclass(frozen=True)
class ReportSchema:
    """Column set and numeric formatting of one report schema version."""
    version: str
    columns: Tuple[ReportColumn, ...]
    float_format: str = '%.2f'

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def header(self) -> str:
        return ','.join(self.column_names)

    @property
    def numeric_dtypes(self) -> Dict[str, str]:
        return {column.name: column.dtype for column in self.columns if column.dtype != 'object'}


# Column set of the original single-platform driver
SCHEMA_V1 = ReportSchema(
    version='v1',
    columns=(
        ReportColumn('runid', 'run_id', 'object'),
        ReportColumn('host_name', 'host_name', 'object'),
        ReportColumn('num_cores', 'core_count', 'int64'),
        ReportColumn('num_tasks', 'workflow_task_count', 'int64'),
        ReportColumn('trace_size', 'total_tasks', 'int64'),
        ReportColumn('failed_tasks', 'failed_tasks', 'int64'),
        ReportColumn('compute_time', 'compute_time', 'float64'),
        ReportColumn('IO_time_input', 'io_input_time', 'float64'),
        ReportColumn('IO_time_output', 'io_output_time', 'float64'),
        ReportColumn('Comm/Comp_Ratio', 'compute_io_ratio', 'float64'),
        ReportColumn('power', 'power_watts', 'float64'),
        ReportColumn('completion_date', 'completion_date', 'float64'),
    )
)

SCHEMA_V2 = ReportSchema(
    version='v2',
    columns=(
        ReportColumn('run_id', 'run_id', 'object'),
        ReportColumn('host_name', 'host_name', 'object'),
        ReportColumn('core_count', 'core_count', 'int64'),
        ReportColumn('per_task_core_allocations', 'per_task_core_allocations', 'object'),
        ReportColumn('total_tasks', 'total_tasks', 'int64'),
        ReportColumn('avg_task_duration', 'avg_task_duration', 'float64'),
        ReportColumn('failed_tasks', 'failed_tasks', 'int64'),
        ReportColumn('compute_time', 'compute_time', 'float64'),
        ReportColumn('io_input_time', 'io_input_time', 'float64'),
        ReportColumn('io_output_time', 'io_output_time', 'float64'),
        ReportColumn('compute_io_ratio', 'compute_io_ratio', 'float64'),
        ReportColumn('total_bytes_read', 'total_bytes_read', 'int64'),
        ReportColumn('total_bytes_written', 'total_bytes_written', 'int64'),
        ReportColumn('completion_date', 'completion_date', 'float64'),
        ReportColumn('power_watts', 'power_watts', 'float64'),
    )
)

SCHEMAS = {schema.version: schema for schema in (SCHEMA_V1, SCHEMA_V2)}


def get_schema(version: str) -> ReportSchema:
    """Look up a report schema by version name."""
    try:
        return SCHEMAS[version]
    except KeyError:
        raise ValueError(f"Unknown report schema version: {version} "
                         f"(available: {', '.join(sorted(SCHEMAS))})") from None


def make_run_id(prefix: str, task_count: int) -> str:
    """Human-traceable run label. Not unique across runs."""
    return f"{prefix}{task_count}"


def _row_values(metrics: AggregateMetrics, host: HostMetrics, run_id: str) -> Dict[str, Any]:
    """Every value a report row can be filled from."""
    return {
        'run_id': run_id,
        'host_name': host.host_name,
        'core_count': host.core_count,
        'per_task_core_allocations': ';'.join(str(cores) for cores in metrics.per_task_core_allocations),
        'workflow_task_count': metrics.workflow_task_count,
        'total_tasks': metrics.total_tasks,
        'avg_task_duration': metrics.avg_task_duration,
        'failed_tasks': metrics.failed_tasks,
        'compute_time': metrics.avg_compute_time,
        'io_input_time': metrics.avg_io_input_time,
        'io_output_time': metrics.avg_io_output_time,
        'compute_io_ratio': metrics.avg_compute_to_io_ratio,
        'total_bytes_read': metrics.total_bytes_read,
        'total_bytes_written': metrics.total_bytes_written,
        'completion_date': metrics.completion_date,
        'power_watts': host.power_watts,
    }


def build_report_frame(metrics: AggregateMetrics, schema: ReportSchema,
                       run_id_prefix: str = DEFAULT_RUN_ID_PREFIX,
                       hosts: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """
    Build the report rows of one run, one row per host in platform order.

    Args:
        metrics: Aggregate metrics of the run
        schema: Report schema defining columns and dtypes
        run_id_prefix: Prefix of the run label, completed by the workflow task count
        hosts: Optional subset of host names to report; platform order is kept

    Returns:
        DataFrame with the schema's columns; undefined metrics are NaN
    """
    host_metrics = list(metrics.host_metrics)
    if hosts is not None:
        selected = set(hosts)
        unknown = selected - {host.host_name for host in host_metrics}
        if unknown:
            raise ValueError(f"Hosts not in the platform: {', '.join(sorted(unknown))}")
        host_metrics = [host for host in host_metrics if host.host_name in selected]

    run_id = make_run_id(run_id_prefix, metrics.workflow_task_count)
    rows = []
    for host in host_metrics:
        values = _row_values(metrics, host, run_id)
        rows.append([values[column.source] for column in schema.columns])

    frame = pd.DataFrame(rows, columns=schema.column_names)
    return frame.astype(schema.numeric_dtypes)


@dataclass
class ReportAppendResult:
    """Outcome of a single append to the report file."""
    report_path: str
    schema_version: str
    header_written: bool
    rows_written: int


class ReportWriter:
    """
    Appends report rows to a cumulative CSV file.

    Only one writer per file at a time is supported; concurrent appends from
    overlapping runs may duplicate the header.
    """

    def __init__(self, report_path: Union[str, Path], schema: ReportSchema = SCHEMA_V2):
        """
        Initialize the report writer.

        Args:
            report_path: Path to the cumulative report file
            schema: Report schema the file follows
        """
        self.report_path = Path(report_path)
        self.schema = schema
        self.logger = logging.getLogger(__name__)

    def _check_columns(self, frame: pd.DataFrame) -> None:
        if list(frame.columns) != self.schema.column_names:
            raise ValueError(f"Report rows do not match schema {self.schema.version} columns")

    def render_rows(self, frame: pd.DataFrame, header: bool) -> str:
        """Render rows as CSV text with the schema's precision policy."""
        self._check_columns(frame)
        return frame.to_csv(
            index=False,
            header=header,
            float_format=self.schema.float_format,
            na_rep=UNDEFINED_MARKER,
            lineterminator='\n'
        )

    def _read_header(self, handle) -> str:
        handle.seek(0)
        try:
            return handle.readline().decode('utf-8').rstrip('\r\n')
        except UnicodeDecodeError:
            return ''

    def append(self, frame: pd.DataFrame) -> ReportAppendResult:
        """
        Append report rows, writing the header first if the file is empty.

        The rows are fully rendered before the file is written, in a single
        write on a handle that is closed on every exit path.

        Args:
            frame: Rows built by build_report_frame for this writer's schema

        Returns:
            ReportAppendResult describing what was written

        Raises:
            ReportSchemaMismatchError: if the file holds another schema's header
            ReportPersistenceError: if the file cannot be opened or written
        """
        self._check_columns(frame)

        try:
            with open(self.report_path, 'a+b') as handle:
                header_pending = handle.seek(0, os.SEEK_END) == 0
                needs_newline = False

                if not header_pending:
                    existing_header = self._read_header(handle)
                    if existing_header != self.schema.header:
                        raise ReportSchemaMismatchError(
                            f"{self.report_path} does not hold a schema {self.schema.version} report "
                            f"(found header: {existing_header!r})")
                    handle.seek(-1, os.SEEK_END)
                    needs_newline = handle.read(1) != b'\n'

                text = self.render_rows(frame, header=header_pending)
                if needs_newline:
                    self.logger.warning(f"{self.report_path} does not end with a newline, "
                                        f"starting new rows on a fresh line")
                    text = '\n' + text

                handle.write(text.encode('utf-8'))
        except OSError as e:
            raise ReportPersistenceError(f"Cannot append to report {self.report_path}: {e}") from e

        if header_pending:
            self.logger.info(f"Created report {self.report_path} with schema {self.schema.version} header")
        self.logger.info(f"Appended {len(frame)} rows to {self.report_path}")

        return ReportAppendResult(
            report_path=str(self.report_path),
            schema_version=self.schema.version,
            header_written=header_pending,
            rows_written=len(frame)
        )

"""
Unit tests for report_writer.py module.
Tests report schemas, row building and the cumulative ReportWriter.
"""

import math
import pytest
import pandas as pd
from pathlib import Path
import sys

# Add src directory to path for imports
sys.path.append(str(Path(__file__).parent.parent / "src"))

from report_writer import (ReportWriter, ReportConfig, ReportPersistenceError, ReportSchemaMismatchError,
                           SCHEMA_V1, SCHEMA_V2, UNDEFINED_MARKER, build_report_frame, get_schema,
                           make_run_id)
from trace_metrics import TraceMetricsCalculator
from task_trace import TaskExecutionRecord, TaskExecutionHistory, HostMetadata, WorkflowExecution


HOSTS = [
    HostMetadata(name="WMSHost", core_count=1, energy_consumed_joules=20.0),
    HostMetadata(name="BatchNode1", core_count=4, energy_consumed_joules=40.0),
    HostMetadata(name="BatchNode2", core_count=8, energy_consumed_joules=80.0),
]


def single_task_metrics(hosts=None):
    """Metrics of a one-task run: input 0-2s, compute 2-6s, output at 10s."""
    record = TaskExecutionRecord(
        read_input_start=0.0, read_input_end=2.0,
        computation_start=2.0, computation_end=6.0,
        write_output_start=10.0, write_output_end=10.0,
        bytes_read=100, bytes_written=50, cores_allocated=2
    )
    execution = WorkflowExecution(
        workflow_id="test_workflow",
        task_count=1,
        completion_date=10.0,
        trace=(TaskExecutionHistory(task_id="task_1", records=(record,)),)
    )
    return TraceMetricsCalculator().calculate_metrics(execution, hosts or [HOSTS[1]])


def empty_trace_metrics():
    """Metrics of a run without any completed task."""
    execution = WorkflowExecution(workflow_id="empty", task_count=0, completion_date=0.0, trace=())
    return TraceMetricsCalculator().calculate_metrics(execution, HOSTS)


def read_lines(path):
    return Path(path).read_text(encoding='utf-8').splitlines()


class TestReportSchema:
    """Test cases for report schemas and run ids."""

    def test_schema_v2_header(self):
        """Test the column order of the v2 schema."""
        assert SCHEMA_V2.header == (
            "run_id,host_name,core_count,per_task_core_allocations,total_tasks,avg_task_duration,"
            "failed_tasks,compute_time,io_input_time,io_output_time,compute_io_ratio,"
            "total_bytes_read,total_bytes_written,completion_date,power_watts"
        )

    def test_schema_v1_header(self):
        """Test the column order of the v1 schema."""
        assert SCHEMA_V1.header == (
            "runid,host_name,num_cores,num_tasks,trace_size,failed_tasks,compute_time,"
            "IO_time_input,IO_time_output,Comm/Comp_Ratio,power,completion_date"
        )

    def test_get_schema(self):
        """Test schema lookup by version."""
        assert get_schema('v1') is SCHEMA_V1
        assert get_schema('v2') is SCHEMA_V2
        with pytest.raises(ValueError, match="Unknown report schema"):
            get_schema('v9')

    def test_make_run_id(self):
        """Test run labels built from the task count."""
        assert make_run_id('extk-', 42) == "extk-42"
        assert make_run_id('extk-', 0) == "extk-0"

    def test_default_config(self):
        """Test default report configuration."""
        config = ReportConfig()
        assert config.report_path == 'execution_output.csv'
        assert config.schema_version == 'v2'
        assert config.run_id_prefix == 'extk-'
        assert config.host_filter is None


class TestBuildReportFrame:
    """Test cases for build_report_frame."""

    def test_one_row_per_host_in_order(self):
        """Test that each host gets one row, in platform order."""
        metrics = single_task_metrics(HOSTS)
        frame = build_report_frame(metrics, SCHEMA_V2)

        assert list(frame.columns) == SCHEMA_V2.column_names
        assert list(frame['host_name']) == ["WMSHost", "BatchNode1", "BatchNode2"]
        assert list(frame['run_id']) == ["extk-1"] * 3
        assert list(frame['power_watts']) == [2.0, 4.0, 8.0]

    def test_host_filter_keeps_platform_order(self):
        """Test restricting rows to a subset of hosts."""
        metrics = single_task_metrics(HOSTS)
        frame = build_report_frame(metrics, SCHEMA_V2, hosts=["BatchNode2", "WMSHost"])

        assert list(frame['host_name']) == ["WMSHost", "BatchNode2"]

    def test_host_filter_unknown_host(self):
        """Test that an unknown host in the filter is rejected."""
        metrics = single_task_metrics(HOSTS)
        with pytest.raises(ValueError, match="CloudNode1"):
            build_report_frame(metrics, SCHEMA_V2, hosts=["CloudNode1"])

    def test_undefined_values_are_missing(self):
        """Test that undefined metrics become missing values, never zero."""
        frame = build_report_frame(empty_trace_metrics(), SCHEMA_V2)

        assert len(frame) == 3
        assert frame['avg_task_duration'].isna().all()
        assert frame['compute_io_ratio'].isna().all()
        assert frame['power_watts'].isna().all()
        assert list(frame['total_tasks']) == [0, 0, 0]

    def test_v1_frame(self):
        """Test building rows for the v1 schema."""
        frame = build_report_frame(single_task_metrics(), SCHEMA_V1, run_id_prefix='wf-')

        assert list(frame.columns) == SCHEMA_V1.column_names
        row = frame.iloc[0]
        assert row['runid'] == "wf-1"
        assert row['num_cores'] == 4
        assert row['num_tasks'] == 1
        assert row['trace_size'] == 1
        assert row['Comm/Comp_Ratio'] == 2.0
        assert row['power'] == 4.0


class TestReportWriter:
    """Test cases for ReportWriter."""

    def test_single_task_row(self, tmp_path):
        """Test the persisted row of a single-task run."""
        report_path = tmp_path / "report.csv"
        writer = ReportWriter(report_path, SCHEMA_V2)

        result = writer.append(build_report_frame(single_task_metrics(), SCHEMA_V2))

        assert result.header_written is True
        assert result.rows_written == 1
        assert result.schema_version == 'v2'
        assert read_lines(report_path) == [
            SCHEMA_V2.header,
            "extk-1,BatchNode1,4,2,1,4.00,0,4.00,2.00,0.00,2.00,100,50,10.00,4.00",
        ]

    def test_header_written_once_across_runs(self, tmp_path):
        """Test that N runs give one header and N x hosts data lines."""
        report_path = tmp_path / "report.csv"
        metrics = single_task_metrics(HOSTS)
        runs = 4

        for _ in range(runs):
            # A fresh writer per run stands in for a separate process
            writer = ReportWriter(report_path, SCHEMA_V2)
            writer.append(build_report_frame(metrics, SCHEMA_V2))

        lines = read_lines(report_path)
        assert lines.count(SCHEMA_V2.header) == 1
        assert lines[0] == SCHEMA_V2.header
        assert len(lines) - 1 == runs * len(HOSTS)

    def test_second_append_reports_no_header(self, tmp_path):
        """Test that only the first append writes the header."""
        report_path = tmp_path / "report.csv"
        writer = ReportWriter(report_path, SCHEMA_V2)
        frame = build_report_frame(single_task_metrics(), SCHEMA_V2)

        first = writer.append(frame)
        second = writer.append(frame)

        assert first.header_written is True
        assert second.header_written is False

    def test_existing_empty_file_gets_header(self, tmp_path):
        """Test that an existing but empty file receives the header."""
        report_path = tmp_path / "report.csv"
        report_path.touch()

        ReportWriter(report_path, SCHEMA_V1).append(build_report_frame(single_task_metrics(), SCHEMA_V1))

        assert read_lines(report_path)[0] == SCHEMA_V1.header

    def test_empty_trace_rows(self, tmp_path):
        """Test that an empty trace still yields one row per host with undefined markers."""
        report_path = tmp_path / "report.csv"
        writer = ReportWriter(report_path, SCHEMA_V2)

        result = writer.append(build_report_frame(empty_trace_metrics(), SCHEMA_V2))

        assert result.rows_written == len(HOSTS)
        lines = read_lines(report_path)
        assert len(lines) == 1 + len(HOSTS)
        fields = lines[1].split(',')
        assert fields[0] == "extk-0"
        assert fields[5] == UNDEFINED_MARKER  # avg_task_duration
        assert fields[10] == UNDEFINED_MARKER  # compute_io_ratio
        assert fields[14] == UNDEFINED_MARKER  # power_watts
        assert fields[11] == "0"  # total_bytes_read is zero, not undefined

    def test_report_reads_back_with_pandas(self, tmp_path):
        """Test that the report loads with the undefined marker as NaN."""
        report_path = tmp_path / "report.csv"
        writer = ReportWriter(report_path, SCHEMA_V2)
        writer.append(build_report_frame(single_task_metrics(HOSTS), SCHEMA_V2))
        writer.append(build_report_frame(empty_trace_metrics(), SCHEMA_V2))

        report = pd.read_csv(report_path, na_values=[UNDEFINED_MARKER], keep_default_na=False)

        assert len(report) == 2 * len(HOSTS)
        assert list(report['run_id'].unique()) == ["extk-1", "extk-0"]
        assert report['power_watts'].iloc[1] == 4.0
        assert math.isnan(report['power_watts'].iloc[4])

    def test_schema_mismatch_is_refused(self, tmp_path):
        """Test that rows of another schema are not appended under an old header."""
        report_path = tmp_path / "report.csv"
        ReportWriter(report_path, SCHEMA_V1).append(build_report_frame(single_task_metrics(), SCHEMA_V1))
        before = report_path.read_text()

        with pytest.raises(ReportSchemaMismatchError):
            ReportWriter(report_path, SCHEMA_V2).append(build_report_frame(single_task_metrics(), SCHEMA_V2))

        assert report_path.read_text() == before

    def test_schema_mismatch_is_persistence_error(self):
        """Test that a schema mismatch is reported as a persistence failure."""
        assert issubclass(ReportSchemaMismatchError, ReportPersistenceError)

    def test_frame_columns_must_match_schema(self, tmp_path):
        """Test that rows built for another schema are rejected."""
        writer = ReportWriter(tmp_path / "report.csv", SCHEMA_V2)
        with pytest.raises(ValueError, match="do not match"):
            writer.append(build_report_frame(single_task_metrics(), SCHEMA_V1))

    def test_missing_directory(self, tmp_path):
        """Test that an unopenable report path raises a persistence error."""
        writer = ReportWriter(tmp_path / "missing" / "report.csv", SCHEMA_V2)

        with pytest.raises(ReportPersistenceError, match="Cannot append"):
            writer.append(build_report_frame(single_task_metrics(), SCHEMA_V2))

        assert not (tmp_path / "missing").exists()

    def test_interrupted_row_does_not_swallow_new_rows(self, tmp_path):
        """Test that rows start on a new line after an interrupted write."""
        report_path = tmp_path / "report.csv"
        report_path.write_text(SCHEMA_V2.header + "\nextk-1,BatchNode1,4", encoding='utf-8')

        ReportWriter(report_path, SCHEMA_V2).append(build_report_frame(single_task_metrics(), SCHEMA_V2))

        lines = read_lines(report_path)
        assert lines[1] == "extk-1,BatchNode1,4"
        assert lines[2] == "extk-1,BatchNode1,4,2,1,4.00,0,4.00,2.00,0.00,2.00,100,50,10.00,4.00"

    def test_v1_fixed_precision(self, tmp_path):
        """Test that v1 float columns share the fixed two-decimal format."""
        report_path = tmp_path / "report.csv"
        ReportWriter(report_path, SCHEMA_V1).append(build_report_frame(single_task_metrics(), SCHEMA_V1))

        assert read_lines(report_path)[1] == "extk-1,BatchNode1,4,1,1,0,4.00,2.00,0.00,2.00,4.00,10.00"

"""
Task Metrics Calculator

This module provides task-level metrics calculation for simulated workflow traces,
measuring the input, computation and output phases of a task's final execution attempt.
"""

import logging
import math
from typing import Optional
from dataclasses import dataclass

try:
    from .task_trace import TaskExecutionHistory, TaskExecutionRecord
except ImportError:
    from task_trace import TaskExecutionHistory, TaskExecutionRecord


class MalformedRecordError(ValueError):
    """Raised when an execution record cannot yield meaningful metrics."""


@dataclass(frozen=True)
class TaskMetrics:
    """Task-level metrics for the final execution attempt of a task."""
    task_id: str
    attempts: int
    compute_time: float
    io_input_time: float
    io_output_time: float
    io_time: float  # io_input_time + io_output_time
    compute_to_io_ratio: Optional[float]  # None when the task did no I/O
    bytes_read: int
    bytes_written: int
    cores_allocated: int
    end_time: float


class TaskMetricsCalculator:
    """
    Calculator for task-level metrics from execution histories.

    Only the final record of a history is measured; earlier attempts failed
    and are reflected solely in the attempt count.
    """

    def __init__(self):
        """Initialize the task metrics calculator."""
        self.logger = logging.getLogger(__name__)

    def validate_record(self, record: TaskExecutionRecord) -> None:
        """
        Check that a record describes a physically possible execution.

        Raises:
            MalformedRecordError: if a timestamp is not finite, a phase ends
                before it starts, a byte count is negative, or no core was
                allocated
        """
        phases = (
            ('read_input', record.read_input_start, record.read_input_end),
            ('computation', record.computation_start, record.computation_end),
            ('write_output', record.write_output_start, record.write_output_end),
        )
        for phase, start, end in phases:
            if not (math.isfinite(start) and math.isfinite(end)):
                raise MalformedRecordError(f"{phase} has a non-finite timestamp ({start}, {end})")
            if end < start:
                raise MalformedRecordError(f"{phase} ends at {end} before it starts at {start}")

        if record.bytes_read < 0 or record.bytes_written < 0:
            raise MalformedRecordError(
                f"negative byte count (read={record.bytes_read}, written={record.bytes_written})")

        if record.cores_allocated < 1:
            raise MalformedRecordError(f"invalid core allocation: {record.cores_allocated}")

    def calculate_task_metrics(self, history: TaskExecutionHistory) -> TaskMetrics:
        """
        Calculate metrics for the final execution attempt of a task.

        Args:
            history: Execution history of the task, oldest attempt first

        Returns:
            TaskMetrics object for the final attempt

        Raises:
            MalformedRecordError: if the final attempt is not a valid record
        """
        record = history.final_record
        try:
            self.validate_record(record)
        except MalformedRecordError as e:
            raise MalformedRecordError(f"Task {history.task_id}: {e}") from e

        io_input_time = record.read_input_end - record.read_input_start
        io_output_time = record.write_output_end - record.write_output_start
        compute_time = record.computation_end - record.computation_start
        io_time = io_input_time + io_output_time

        # The ratio has no meaning without any I/O, leave it undefined
        ratio = compute_time / io_time if io_time > 0 else None

        return TaskMetrics(
            task_id=history.task_id,
            attempts=len(history.records),
            compute_time=compute_time,
            io_input_time=io_input_time,
            io_output_time=io_output_time,
            io_time=io_time,
            compute_to_io_ratio=ratio,
            bytes_read=record.bytes_read,
            bytes_written=record.bytes_written,
            cores_allocated=record.cores_allocated,
            end_time=record.end_time
        )

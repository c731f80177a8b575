"""
Trace Metrics Calculator

This module reduces the task trace of a finished simulation run into aggregate
performance and energy metrics: failure counts, timing breakdown, compute/IO
ratio, byte totals, completion date and per-host power.

All reductions are pure functions over immutable inputs. A metric whose
denominator is zero is reported as None ("undefined"), never as 0, NaN or inf.
"""

import json
import logging
import math
import statistics
from typing import Dict, List, Any, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, asdict
from pathlib import Path

try:
    from .task_trace import HostMetadata, TaskTrace, WorkflowExecution
    from .task_metrics import MalformedRecordError, TaskMetrics, TaskMetricsCalculator
except ImportError:
    from task_trace import HostMetadata, TaskTrace, WorkflowExecution
    from task_metrics import MalformedRecordError, TaskMetrics, TaskMetricsCalculator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimingBreakdown:
    """Averaged timing of the final attempts of all well-formed tasks."""
    avg_compute_time: Optional[float]
    avg_io_input_time: Optional[float]
    avg_io_output_time: Optional[float]
    avg_compute_to_io_ratio: Optional[float]
    total_compute_time: float
    measured_tasks: int
    ratio_excluded_tasks: int  # tasks without any I/O time
    malformed_tasks: int


@dataclass(frozen=True)
class HostMetrics:
    """Energy metrics for a single host."""
    host_name: str
    core_count: int
    energy_consumed_joules: float
    power_watts: Optional[float]


@dataclass(frozen=True)
class AggregateMetrics:
    """Aggregate metrics of one simulation run."""
    workflow_id: str
    workflow_task_count: int
    total_tasks: int
    failed_tasks: int
    malformed_tasks: int
    ratio_excluded_tasks: int
    avg_compute_time: Optional[float]
    avg_io_input_time: Optional[float]
    avg_io_output_time: Optional[float]
    avg_compute_to_io_ratio: Optional[float]
    total_compute_time: float
    avg_task_duration: Optional[float]
    total_bytes_read: int
    total_bytes_written: int
    completion_date: float
    per_task_core_allocations: Tuple[int, ...]
    host_metrics: Tuple[HostMetrics, ...]

    @property
    def power_by_host(self) -> Dict[str, Optional[float]]:
        return {host.host_name: host.power_watts for host in self.host_metrics}


def collect_task_metrics(trace: TaskTrace,
                         calculator: Optional[TaskMetricsCalculator] = None
                         ) -> Tuple[List[TaskMetrics], List[str]]:
    """
    Measure the final attempt of every task in the trace.

    A malformed record only removes its own task from the measurements.

    Returns:
        Tuple of (metrics of well-formed tasks in trace order, ids of malformed tasks)
    """
    calculator = calculator or TaskMetricsCalculator()
    measured = []
    malformed = []
    for history in trace:
        try:
            measured.append(calculator.calculate_task_metrics(history))
        except MalformedRecordError as e:
            logger.warning(f"Excluding malformed record from aggregates: {e}")
            malformed.append(history.task_id)
    return measured, malformed


def count_failures(trace: TaskTrace) -> int:
    """Count tasks that needed at least one retry before completing."""
    return sum(1 for history in trace if len(history.records) > 1)


def _timing_breakdown(task_metrics: Sequence[TaskMetrics], malformed_tasks: int) -> TimingBreakdown:
    ratios = [tm.compute_to_io_ratio for tm in task_metrics if tm.compute_to_io_ratio is not None]
    if not task_metrics:
        return TimingBreakdown(
            avg_compute_time=None,
            avg_io_input_time=None,
            avg_io_output_time=None,
            avg_compute_to_io_ratio=None,
            total_compute_time=0.0,
            measured_tasks=0,
            ratio_excluded_tasks=0,
            malformed_tasks=malformed_tasks
        )

    return TimingBreakdown(
        avg_compute_time=statistics.mean(tm.compute_time for tm in task_metrics),
        avg_io_input_time=statistics.mean(tm.io_input_time for tm in task_metrics),
        avg_io_output_time=statistics.mean(tm.io_output_time for tm in task_metrics),
        avg_compute_to_io_ratio=statistics.mean(ratios) if ratios else None,
        total_compute_time=sum(tm.compute_time for tm in task_metrics),
        measured_tasks=len(task_metrics),
        ratio_excluded_tasks=len(task_metrics) - len(ratios),
        malformed_tasks=malformed_tasks
    )


def compute_timing_breakdown(trace: TaskTrace) -> TimingBreakdown:
    """
    Average the input, computation and output times of the final attempts.

    The compute/IO ratio is averaged only over tasks that spent time on I/O;
    tasks with zero I/O time are left out of both numerator and denominator.
    With no such task the ratio is None.
    """
    task_metrics, malformed = collect_task_metrics(trace)
    return _timing_breakdown(task_metrics, len(malformed))


def _byte_totals(task_metrics: Sequence[TaskMetrics]) -> Tuple[int, int]:
    return (sum(tm.bytes_read for tm in task_metrics),
            sum(tm.bytes_written for tm in task_metrics))


def compute_byte_totals(trace: TaskTrace) -> Tuple[int, int]:
    """Sum bytes read and written over the final attempts."""
    task_metrics, _ = collect_task_metrics(trace)
    return _byte_totals(task_metrics)


def _completion_date(task_metrics: Sequence[TaskMetrics], fallback: float) -> float:
    if not task_metrics:
        return fallback
    return max(tm.end_time for tm in task_metrics)


def compute_completion_date(trace: TaskTrace, fallback: float = 0.0) -> float:
    """
    Latest terminal timestamp across the final attempts.

    Args:
        trace: Task trace of the run
        fallback: Simulator-reported completion time, used when the trace
            holds no measurable task

    Returns:
        Completion date in seconds of simulated time
    """
    task_metrics, _ = collect_task_metrics(trace)
    return _completion_date(task_metrics, fallback)


def compute_power(host: HostMetadata, completion_date: float) -> Optional[float]:
    """Average power of a host over the run, None when the run took no measurable time."""
    if completion_date is None or not math.isfinite(completion_date) or completion_date <= 0:
        return None
    return host.energy_consumed_joules / completion_date


def compute_avg_task_duration(total_compute_time: float, total_tasks: int,
                              failed_tasks: int) -> Optional[float]:
    """Compute time per task that succeeded on its first attempt."""
    successful_tasks = total_tasks - failed_tasks
    if successful_tasks <= 0:
        return None
    return total_compute_time / successful_tasks


def _format_value(value: Optional[float], fmt: str = '.2f', unit: str = '') -> str:
    if value is None:
        return 'undefined'
    return f"{value:{fmt}}{unit}"


class TraceMetricsCalculator:
    """
    Calculator for run-level metrics from a simulated workflow trace.

    Every call to calculate_metrics builds a fresh AggregateMetrics value;
    the calculator holds no results between calls.
    """

    def __init__(self):
        """Initialize the metrics calculator."""
        self.task_metrics_calculator = TaskMetricsCalculator()
        self.logger = logging.getLogger(__name__)

    def calculate_metrics(self, execution: WorkflowExecution,
                          hosts: Sequence[HostMetadata]) -> AggregateMetrics:
        """
        Calculate aggregate metrics for a workflow execution.

        Args:
            execution: Workflow execution loaded from the simulation output
            hosts: Hosts of the simulated platform, in platform order

        Returns:
            AggregateMetrics object containing all calculated metrics
        """
        self.logger.info(f"Starting trace metrics calculation for workflow {execution.workflow_id}")

        trace = execution.trace
        task_metrics, malformed = collect_task_metrics(trace, self.task_metrics_calculator)

        total_tasks = len(trace)
        failed_tasks = count_failures(trace)
        # Average duration counts only measured tasks, like its numerator
        measured_failures = sum(1 for tm in task_metrics if tm.attempts > 1)
        timing = _timing_breakdown(task_metrics, len(malformed))
        total_bytes_read, total_bytes_written = _byte_totals(task_metrics)
        completion_date = _completion_date(task_metrics, execution.completion_date)

        host_metrics = tuple(
            HostMetrics(
                host_name=host.name,
                core_count=host.core_count,
                energy_consumed_joules=host.energy_consumed_joules,
                power_watts=compute_power(host, completion_date)
            )
            for host in hosts
        )

        metrics = AggregateMetrics(
            workflow_id=execution.workflow_id,
            workflow_task_count=execution.task_count,
            total_tasks=total_tasks,
            failed_tasks=failed_tasks,
            malformed_tasks=timing.malformed_tasks,
            ratio_excluded_tasks=timing.ratio_excluded_tasks,
            avg_compute_time=timing.avg_compute_time,
            avg_io_input_time=timing.avg_io_input_time,
            avg_io_output_time=timing.avg_io_output_time,
            avg_compute_to_io_ratio=timing.avg_compute_to_io_ratio,
            total_compute_time=timing.total_compute_time,
            avg_task_duration=compute_avg_task_duration(timing.total_compute_time,
                                                        timing.measured_tasks, measured_failures),
            total_bytes_read=total_bytes_read,
            total_bytes_written=total_bytes_written,
            completion_date=completion_date,
            per_task_core_allocations=tuple(tm.cores_allocated for tm in task_metrics),
            host_metrics=host_metrics
        )

        if malformed:
            self.logger.warning(f"{len(malformed)} malformed task records excluded: {', '.join(malformed)}")
        self.logger.info("Trace metrics calculation completed")
        return metrics

    def print_metrics(self, metrics: AggregateMetrics, detailed: bool = False) -> None:
        """
        Print calculated metrics in a readable format.

        Args:
            metrics: Metrics to print
            detailed: If True, also print the per-task core allocations
        """
        print("\n" + "="*60)
        print("WORKFLOW TRACE METRICS")
        print("="*60)

        print(f"Workflow ID: {metrics.workflow_id}")
        print(f"Workflow Tasks: {metrics.workflow_task_count}")
        print(f"Completed Tasks: {metrics.total_tasks}")
        print(f"Failed Tasks: {metrics.failed_tasks}")
        print(f"Malformed Tasks: {metrics.malformed_tasks}")
        print(f"Completion Date: {metrics.completion_date:.2f} seconds")
        print(f"Average Task Duration: {_format_value(metrics.avg_task_duration, unit=' seconds')}")

        print(f"\n" + "-"*40)
        print("TIMING BREAKDOWN")
        print("-"*40)
        print(f"Average Compute Time: {_format_value(metrics.avg_compute_time, unit=' seconds')}")
        print(f"Average Input I/O Time: {_format_value(metrics.avg_io_input_time, unit=' seconds')}")
        print(f"Average Output I/O Time: {_format_value(metrics.avg_io_output_time, unit=' seconds')}")
        print(f"Compute/IO Ratio: {_format_value(metrics.avg_compute_to_io_ratio, fmt='.4f')}")
        print(f"Tasks Without I/O: {metrics.ratio_excluded_tasks}")
        print(f"Total Bytes Read: {metrics.total_bytes_read:,}")
        print(f"Total Bytes Written: {metrics.total_bytes_written:,}")

        print(f"\n" + "-"*40)
        print("HOST ENERGY")
        print("-"*40)
        for host in metrics.host_metrics:
            print(f"  {host.host_name}: {host.core_count} cores, "
                  f"{host.energy_consumed_joules:.2f} J, "
                  f"{_format_value(host.power_watts, unit=' W')}")

        if detailed:
            print(f"\nPer-task Core Allocations: {list(metrics.per_task_core_allocations)}")

    def write_metrics_to_file(self, metrics: AggregateMetrics, filepath: Union[str, Path]) -> None:
        """
        Write metrics to a JSON file. Undefined values are written as null.

        Args:
            metrics: Metrics to write
            filepath: Path to output file
        """
        with open(filepath, 'w') as f:
            json.dump(asdict(metrics), f, indent=2)

        self.logger.info(f"Metrics written to {filepath}")

    def get_metrics_summary(self, metrics: AggregateMetrics) -> Dict[str, Any]:
        """
        Get a flat summary of key metrics.

        Returns:
            Dictionary containing key metrics summary
        """
        return {
            'workflow_id': metrics.workflow_id,
            'workflow_task_count': metrics.workflow_task_count,
            'total_tasks': metrics.total_tasks,
            'failed_tasks': metrics.failed_tasks,
            'malformed_tasks': metrics.malformed_tasks,
            'avg_task_duration': metrics.avg_task_duration,
            'avg_compute_time': metrics.avg_compute_time,
            'avg_io_input_time': metrics.avg_io_input_time,
            'avg_io_output_time': metrics.avg_io_output_time,
            'avg_compute_to_io_ratio': metrics.avg_compute_to_io_ratio,
            'total_bytes_read': metrics.total_bytes_read,
            'total_bytes_written': metrics.total_bytes_written,
            'completion_date': metrics.completion_date,
            'power_by_host': metrics.power_by_host
        }

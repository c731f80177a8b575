"""
Task Trace

This module provides the data types describing a finished simulation run
(task execution records, per-task attempt histories, host metadata) and the
loaders that read them from the JSON dumps written by the simulator.
"""

import json
import logging
import math
from typing import Dict, List, Any, Sequence, Tuple, Union
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

RECORD_TIMESTAMP_FIELDS = (
    'read_input_start', 'read_input_end',
    'computation_start', 'computation_end',
    'write_output_start', 'write_output_end',
)


class TraceFormatError(ValueError):
    """Raised when a simulation dump is structurally invalid."""


@dataclass(frozen=True)
class TaskExecutionRecord:
    """Timing and I/O data for a single execution attempt of a task."""
    read_input_start: float
    read_input_end: float
    computation_start: float
    computation_end: float
    write_output_start: float
    write_output_end: float
    bytes_read: int
    bytes_written: int
    cores_allocated: int

    @property
    def end_time(self) -> float:
        """Terminal timestamp of the attempt."""
        return max(self.read_input_end, self.computation_end, self.write_output_end)


@dataclass(frozen=True)
class TaskExecutionHistory:
    """All execution attempts of one task, oldest first."""
    task_id: str
    records: Tuple[TaskExecutionRecord, ...]

    @property
    def final_record(self) -> TaskExecutionRecord:
        """The attempt that produced the reported completion."""
        return self.records[-1]

    @property
    def retry_count(self) -> int:
        return len(self.records) - 1


# Ordered by completion, one history per task
TaskTrace = Sequence[TaskExecutionHistory]


@dataclass(frozen=True)
class HostMetadata:
    """Static and derived information about a simulated host."""
    name: str
    core_count: int
    energy_consumed_joules: float


@dataclass(frozen=True)
class WorkflowExecution:
    """Workflow-level outcome of a simulation run."""
    workflow_id: str
    task_count: int
    completion_date: float  # Simulator-reported workflow completion time
    trace: Tuple[TaskExecutionHistory, ...]


def _load_json(filepath: Union[str, Path]) -> Dict[str, Any]:
    """Load a JSON document that must be an object."""
    with open(filepath, 'r') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise TraceFormatError(f"Expected a JSON object in {filepath}")
    return data


def parse_execution_record(data: Dict[str, Any]) -> TaskExecutionRecord:
    """Build a TaskExecutionRecord from its JSON representation."""
    try:
        timestamps = {field: float(data[field]) for field in RECORD_TIMESTAMP_FIELDS}
        return TaskExecutionRecord(
            bytes_read=int(data.get('bytes_read', 0)),
            bytes_written=int(data.get('bytes_written', 0)),
            cores_allocated=int(data.get('num_cores_allocated', 1)),
            **timestamps
        )
    except KeyError as e:
        raise TraceFormatError(f"Execution record is missing field {e}") from e
    except (TypeError, ValueError, OverflowError) as e:
        raise TraceFormatError(f"Execution record has a non-numeric field: {e}") from e


def parse_task_history(data: Dict[str, Any]) -> TaskExecutionHistory:
    """Build a TaskExecutionHistory from a task entry of the workflow dump."""
    task_id = data.get('task_id')
    if not task_id:
        raise TraceFormatError("Task entry without 'task_id'")

    history = data.get('execution_history')
    if not isinstance(history, list) or not history:
        raise TraceFormatError(f"Task {task_id} has no execution history")

    records = tuple(parse_execution_record(record) for record in history)
    return TaskExecutionHistory(task_id=str(task_id), records=records)


def load_platform(filepath: Union[str, Path]) -> List[HostMetadata]:
    """
    Load the host list of a simulated platform.

    The document is expected to look like::

        {"hosts": [{"name": "BatchNode1", "cores": 4, "energy_consumed": 40.0}]}

    Host order is preserved, it defines the row order of the report.

    Args:
        filepath: Path to the platform state JSON file

    Returns:
        List of HostMetadata objects in platform order
    """
    platform_data = _load_json(filepath)
    entries = platform_data.get('hosts')
    if not isinstance(entries, list):
        raise TraceFormatError(f"No 'hosts' list in {filepath}")

    hosts = []
    seen = set()
    for entry in entries:
        try:
            host = HostMetadata(
                name=str(entry['name']),
                core_count=int(entry['cores']),
                energy_consumed_joules=float(entry.get('energy_consumed', 0.0))
            )
        except KeyError as e:
            raise TraceFormatError(f"Host entry is missing field {e}") from e
        except (TypeError, ValueError, OverflowError) as e:
            raise TraceFormatError(f"Host entry has an invalid field: {e}") from e

        if host.name in seen:
            raise TraceFormatError(f"Duplicate host name: {host.name}")
        if host.core_count < 1:
            raise TraceFormatError(f"Host {host.name} must have at least one core")
        if not math.isfinite(host.energy_consumed_joules):
            raise TraceFormatError(f"Host {host.name} reports non-finite energy consumption")
        if host.energy_consumed_joules < 0:
            raise TraceFormatError(f"Host {host.name} reports negative energy consumption")
        seen.add(host.name)
        hosts.append(host)

    logger.info(f"Loaded {len(hosts)} hosts from: {filepath}")
    return hosts


def load_workflow_execution(filepath: Union[str, Path]) -> WorkflowExecution:
    """
    Load the execution trace of a simulated workflow.

    Args:
        filepath: Path to the workflow execution JSON file

    Returns:
        WorkflowExecution with the task trace in completion order
    """
    execution_data = _load_json(filepath)
    workflow = execution_data.get('workflow', {})
    tasks = execution_data.get('tasks', [])
    if not isinstance(workflow, dict) or not isinstance(tasks, list):
        raise TraceFormatError(f"Malformed workflow execution document: {filepath}")

    trace = tuple(parse_task_history(task) for task in tasks)

    try:
        task_count = int(workflow.get('num_tasks', len(trace)))
        completion_date = float(workflow.get('completion_date', 0.0))
    except (TypeError, ValueError, OverflowError) as e:
        raise TraceFormatError(f"Invalid workflow summary: {e}") from e
    if not math.isfinite(completion_date):
        raise TraceFormatError(f"Non-finite workflow completion date in {filepath}")

    execution = WorkflowExecution(
        workflow_id=str(workflow.get('id', filepath)),
        task_count=task_count,
        completion_date=completion_date,
        trace=trace
    )
    logger.info(f"Loaded {len(trace)} task completions for workflow {execution.workflow_id}")
    return execution

"""
Report Runner

This module provides a high-level interface that combines trace loading, metrics
aggregation and report persistence, offering a complete post-simulation
analysis pipeline and its command line entry point.
"""

import json
import logging
import argparse
from typing import Dict, List, Any, Optional, Union
from dataclasses import asdict
from pathlib import Path

try:
    from .task_trace import load_platform, load_workflow_execution, TraceFormatError
    from .trace_metrics import TraceMetricsCalculator, AggregateMetrics
    from .report_writer import (ReportConfig, ReportWriter, ReportPersistenceError, ReportAppendResult,
                                build_report_frame, get_schema, make_run_id, SCHEMAS)
except ImportError:
    from task_trace import load_platform, load_workflow_execution, TraceFormatError
    from trace_metrics import TraceMetricsCalculator, AggregateMetrics
    from report_writer import (ReportConfig, ReportWriter, ReportPersistenceError, ReportAppendResult,
                               build_report_frame, get_schema, make_run_id, SCHEMAS)


class ReportRunner:
    """
    High-level trace analysis and reporting pipeline.

    This class loads the simulation output, aggregates its trace into run-level
    metrics and appends one row per host to the cumulative report. A failure to
    persist the report never discards the computed metrics.
    """

    def __init__(self, report_config: Optional[ReportConfig] = None):
        """
        Initialize the report runner.

        Args:
            report_config: Report configuration
        """
        self.report_config = report_config or ReportConfig()
        self.schema = get_schema(self.report_config.schema_version)
        self.calculator = TraceMetricsCalculator()
        self.writer = ReportWriter(self.report_config.report_path, self.schema)
        self.logger = logging.getLogger(__name__)

    def run_report(self, platform_filepath: Union[str, Path],
                   workflow_filepath: Union[str, Path]) -> Dict[str, Any]:
        """
        Run the complete analysis and reporting pipeline.

        Args:
            platform_filepath: Path to the platform state JSON file
            workflow_filepath: Path to the workflow execution JSON file

        Returns:
            Dictionary containing loaded inputs, metrics and persistence outcome
        """
        self.logger.info("Starting trace analysis and reporting")

        # Step 1: Load simulation output
        try:
            hosts = load_platform(platform_filepath)
            execution = load_workflow_execution(workflow_filepath)
        except (OSError, TraceFormatError, json.JSONDecodeError) as e:
            self.logger.error(f"Loading simulation output failed: {e}")
            return {
                'hosts': [],
                'workflow_execution': None,
                'metrics': None,
                'append_result': None,
                'success': False,
                'persisted': False,
                'error_message': str(e)
            }

        # Step 2: Aggregate the trace
        metrics = self.calculator.calculate_metrics(execution, hosts)

        # Step 3: Persist one row per host
        results = {
            'hosts': hosts,
            'workflow_execution': execution,
            'metrics': metrics,
            'append_result': None,
            'success': True,
            'persisted': False,
            'error_message': None
        }
        try:
            results['append_result'] = self.write_report(metrics)
            results['persisted'] = True
        except (ReportPersistenceError, ValueError) as e:
            self.logger.error(f"Report persistence failed, metrics are still available: {e}")
            results['error_message'] = str(e)

        self.logger.info("Trace analysis and reporting completed")
        return results

    def write_report(self, metrics: AggregateMetrics) -> ReportAppendResult:
        """Append this run's rows to the configured report."""
        frame = build_report_frame(
            metrics,
            self.schema,
            run_id_prefix=self.report_config.run_id_prefix,
            hosts=self.report_config.host_filter
        )
        return self.writer.append(frame)

    def print_complete_summary(self, results: Dict[str, Any]) -> None:
        """Print a complete summary of the analysis and reporting."""
        if not results['success']:
            print(f"\n❌ Trace analysis failed: {results['error_message']}")
            return

        metrics = results['metrics']

        print("\n" + "="*80)
        print("COMPLETE TRACE REPORT SUMMARY")
        print("="*80)

        print(f"\n📊 RUN:")
        print(f"  Run ID: {make_run_id(self.report_config.run_id_prefix, metrics.workflow_task_count)}")
        print(f"  Hosts: {len(results['hosts'])}")

        self.calculator.print_metrics(metrics)

        print(f"\n💾 REPORT:")
        if results['persisted']:
            append_result = results['append_result']
            print(f"  Report: {append_result.report_path} (schema {append_result.schema_version})")
            print(f"  Header Written: {append_result.header_written}")
            print(f"  Rows Appended: {append_result.rows_written}")
        else:
            print(f"  ⚠️  Report not written: {results['error_message']}")

    def write_complete_results(self, results: Dict[str, Any],
                               filepath: Union[str, Path]) -> None:
        """Write metrics and persistence outcome to a JSON file."""
        append_result = results['append_result']
        output_data = {
            'success': results['success'],
            'persisted': results['persisted'],
            'error_message': results['error_message'],
            'metrics': asdict(results['metrics']) if results['metrics'] else None,
            'report': asdict(append_result) if append_result else None
        }

        with open(filepath, 'w') as f:
            json.dump(output_data, f, indent=2)

        self.logger.info(f"Complete results written to {filepath}")


def setup_logging(level: str = 'INFO') -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s:%(name)s:%(levelname)s: %(message)s'
    )


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse and validate command line arguments."""
    parser = argparse.ArgumentParser(
        description='Trace Report - Aggregate a simulated workflow trace into a cumulative CSV report'
    )
    parser.add_argument(
        'platform_file',
        type=str,
        help='Path to the platform state JSON file (hosts, cores, energy consumed)'
    )
    parser.add_argument(
        'workflow_file',
        type=str,
        help='Path to the workflow execution JSON file (task execution histories)'
    )
    parser.add_argument(
        '--report-path',
        type=str,
        default='execution_output.csv',
        help='Path to the cumulative CSV report (default: execution_output.csv)'
    )
    parser.add_argument(
        '--schema',
        type=str,
        choices=sorted(SCHEMAS),
        default='v2',
        help='Report schema version (default: v2)'
    )
    parser.add_argument(
        '--run-id-prefix',
        type=str,
        default='extk-',
        help='Prefix of the run label, followed by the workflow task count (default: extk-)'
    )
    parser.add_argument(
        '--host',
        action='append',
        dest='hosts',
        help='Only report this host (repeatable, default: every platform host)'
    )
    parser.add_argument(
        '--metrics-output',
        type=str,
        default=None,
        help='Optional path of a JSON file receiving the computed metrics'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )
    args = parser.parse_args(argv)

    for name in ('platform_file', 'workflow_file'):
        if not Path(getattr(args, name)).is_file():
            parser.error(f"{name} not found: {getattr(args, name)}")

    return args


def main(argv: Optional[List[str]] = None):
    """Main function with command line argument support."""
    args = parse_arguments(argv)
    setup_logging(args.log_level)

    report_config = ReportConfig(
        report_path=args.report_path,
        schema_version=args.schema,
        run_id_prefix=args.run_id_prefix,
        host_filter=args.hosts
    )

    runner = ReportRunner(report_config)
    results = runner.run_report(args.platform_file, args.workflow_file)

    runner.print_complete_summary(results)

    if args.metrics_output and results['success']:
        runner.write_complete_results(results, args.metrics_output)


if __name__ == "__main__":
    main()

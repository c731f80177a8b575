#!/usr/bin/env python3
"""
Trace Report Example

This example demonstrates how to aggregate a simulated workflow trace and append
its per-host rows to a cumulative report, twice, using both report schema versions.
"""

import sys
import logging
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from report_runner import ReportRunner
from report_writer import ReportConfig


def main():
    """Run the trace report example."""
    print("="*80)
    print("TRACE REPORT EXAMPLE")
    print("="*80)

    # Configure logging (optional - set to WARNING to reduce output)
    logging.basicConfig(level=logging.WARNING)

    examples_dir = Path(__file__).parent
    platform_file = examples_dir / 'platform_state_example.json'
    workflow_file = examples_dir / 'workflow_execution_example.json'

    results_dir = examples_dir.parent / 'results'
    results_dir.mkdir(exist_ok=True)

    for schema_version in ('v1', 'v2'):
        report_config = ReportConfig(
            report_path=str(results_dir / f'execution_output_{schema_version}.csv'),
            schema_version=schema_version
        )
        print(f"\n🚀 Reporting with schema {schema_version} to {report_config.report_path}")

        runner = ReportRunner(report_config)
        results = runner.run_report(platform_file, workflow_file)

        if not results['success']:
            print(f"❌ Trace analysis failed: {results['error_message']}")
            return 1

        runner.print_complete_summary(results)

    metrics_file = results_dir / 'report_example_metrics.json'
    print(f"\n💾 Saving metrics to: {metrics_file}")
    runner.write_complete_results(results, metrics_file)

    print("\n✅ Trace report example completed!")
    return 0


if __name__ == "__main__":
    sys.exit(main())

import argparse
import sys
from typing import Tuple
from pprint import pformat
import matplotlib
# Set non-interactive backend to avoid display issues
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from pathlib import Path

# Add src directory to path for imports
sys.path.append(str(Path(__file__).parent.parent / "src"))

from report_writer import SCHEMAS, UNDEFINED_MARKER


def load_report(report_path: str) -> Tuple[pd.DataFrame, str]:
    """Load a cumulative report and normalize its columns to the v2 names.

    Undefined metrics are read as NaN.

    Returns:
        tuple: (report rows, schema version of the file)
    """
    path = Path(report_path)
    if not path.is_file():
        raise FileNotFoundError(f"Report '{report_path}' not found")

    report = pd.read_csv(path, na_values=[UNDEFINED_MARKER], keep_default_na=False)

    for version, schema in SCHEMAS.items():
        if list(report.columns) == schema.column_names:
            report = report.rename(columns={column.name: column.source for column in schema.columns})
            break
    else:
        raise ValueError(f"'{report_path}' does not match any known report schema")

    # Run ids are not unique, number each host's rows in file order instead
    report['run_number'] = report.groupby('host_name').cumcount() + 1
    return report, version


def summarize_hosts(report: pd.DataFrame) -> pd.DataFrame:
    """Aggregate report rows per host."""
    summary = report.groupby('host_name', sort=False).agg(
        runs=('run_number', 'max'),
        core_count=('core_count', 'last'),
        mean_power_watts=('power_watts', 'mean'),
        max_power_watts=('power_watts', 'max'),
        mean_completion_date=('completion_date', 'mean'),
        mean_failed_tasks=('failed_tasks', 'mean'),
    )
    # Power per core makes hosts of different sizes comparable
    summary['mean_power_per_core'] = summary['mean_power_watts'] / summary['core_count']
    return summary.reset_index()


def plot_power_by_host(report: pd.DataFrame, output_dir: str = "plots") -> Path:
    """Plot the average power of each host across runs."""
    fig, ax = plt.subplots(figsize=(12, 6))
    sns.barplot(data=report, x='host_name', y='power_watts', errorbar='sd', ax=ax, color='steelblue')
    ax.set_xlabel('Host')
    ax.set_ylabel('Power (W)')
    ax.set_title('Average power per host across runs')
    ax.tick_params(axis='x', rotation=45)
    fig.tight_layout()

    output_path = Path(output_dir) / "power_by_host.png"
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path


def plot_run_trends(report: pd.DataFrame, output_dir: str = "plots") -> Path:
    """Plot run-level metrics in file order: completion date, compute/IO ratio and failures."""
    # Run-level values are repeated on every host row, keep one row per run
    runs = report.drop_duplicates(subset='run_number', keep='first').sort_values('run_number')
    run_numbers = runs['run_number'].to_numpy()

    fig, axes = plt.subplots(1, 3, figsize=(18, 5))

    axes[0].plot(run_numbers, runs['completion_date'].to_numpy(), marker='o')
    axes[0].set_title('Completion date')
    axes[0].set_ylabel('Seconds')

    ratios = runs['compute_io_ratio'].to_numpy(dtype=float)
    defined = ~np.isnan(ratios)
    axes[1].plot(run_numbers[defined], ratios[defined], marker='o', color='darkorange')
    if (~defined).any():
        axes[1].scatter(run_numbers[~defined], np.zeros((~defined).sum()), marker='x', color='red',
                        label=UNDEFINED_MARKER)
        axes[1].legend()
    axes[1].set_title('Compute/IO ratio')

    axes[2].bar(run_numbers, runs['failed_tasks'].to_numpy(), color='firebrick')
    axes[2].set_title('Failed tasks')

    for ax in axes:
        ax.set_xlabel('Run')
        ax.grid(True, alpha=0.3)
    fig.tight_layout()

    output_path = Path(output_dir) / "run_trends.png"
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path


if __name__ == "__main__":
    # Set up argument parser
    parser = argparse.ArgumentParser(
        description='Create visualizations for a cumulative trace report using pandas/matplotlib/seaborn'
    )
    parser.add_argument('report_path', type=str,
                        help='Path to the cumulative CSV report')
    parser.add_argument('--output-dir', type=str, default='output',
                        help='Base output directory (default: output)')
    args = parser.parse_args()

    # Create output directory
    Path(args.output_dir).mkdir(parents=True, exist_ok=True)

    print(f"Processing report: {args.report_path}")
    try:
        report, version = load_report(args.report_path)
        print(f"Loaded {len(report)} rows of schema {version} "
              f"for {report['host_name'].nunique()} hosts")

        summary = summarize_hosts(report)
        summary_path = Path(args.output_dir) / "host_summary.csv"
        summary.to_csv(summary_path, index=False)
        print(f"Host summary saved to {summary_path}")
        print(pformat(summary.to_dict(orient='records')[:3]))

        print(f"Power plot saved to {plot_power_by_host(report, args.output_dir)}")
        print(f"Run trends saved to {plot_run_trends(report, args.output_dir)}")

    except Exception as e:
        print(f"Error processing report: {e}")
        exit(1)

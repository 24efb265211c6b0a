"""
Report formatting and export utilities.

This module renders reconciliation reports as JSON, CSV, and
console/terminal output.
"""

import csv
import json
from typing import Any


def export_report_json(report: dict[str, Any], output_path: str) -> None:
    """
    Export report to JSON file

    Args:
        report: Report dictionary
        output_path: Path to output file
    """
    with open(output_path, 'w') as f:
        json.dump(report, f, indent=2)


def format_report_json(report: dict[str, Any]) -> str:
    return json.dumps(report, indent=2)


def export_report_csv(report: dict[str, Any], output_path: str) -> None:
    """
    Export report to CSV file, one row per run

    Args:
        report: Report dictionary
        output_path: Path to output file
    """
    with open(output_path, 'w', newline='') as f:
        writer = csv.writer(f)

        writer.writerow([
            "Dataset",
            "Run",
            "Status",
            "Total",
            "Both Matched",
            "Both Mismatched",
            "Source Only",
            "Target Only",
            "Failure Cause",
        ])

        for run in report.get("runs", []):
            summary = run.get("summary") or {}
            writer.writerow([
                run.get("datasetId", ""),
                run.get("id", ""),
                run.get("status", ""),
                summary.get("totalCount", ""),
                summary.get("bothMatchedCount", ""),
                summary.get("bothMismatchedCount", ""),
                (summary.get("source") or {}).get("onlyHereCount", ""),
                (summary.get("target") or {}).get("onlyHereCount", ""),
                run.get("failureCause") or "",
            ])


def _format_run(run: dict[str, Any]) -> list[str]:
    lines = [f"Dataset: {run['datasetId']} (run {run['id']}, {run['status']})"]

    if run.get("completedDurationSeconds") is not None:
        lines.append(f"  Duration: {run['completedDurationSeconds']:.2f}s")

    if run.get("failureCause"):
        lines.append(f"  Failure: {run['failureCause']}")

    summary = run.get("summary")
    if summary:
        lines.append(f"  Total Keys: {summary['totalCount']:,}")
        lines.append(f"  Both Matched: {summary['bothMatchedCount']:,}")
        lines.append(f"  Both Mismatched: {summary['bothMismatchedCount']:,}")
        lines.append(
            f"  Source: {summary['source']['totalCount']:,} rows, "
            f"{summary['source']['onlyHereCount']:,} only in source"
        )
        lines.append(
            f"  Target: {summary['target']['totalCount']:,} rows, "
            f"{summary['target']['onlyHereCount']:,} only in target"
        )

    return lines


def format_report_console(report: dict[str, Any]) -> str:
    """
    Format report for console output

    Args:
        report: Report dictionary from `generate_report`

    Returns:
        Formatted string for console display
    """
    lines = []

    lines.append("=" * 80)
    lines.append("RECONCILIATION REPORT")
    lines.append("=" * 80)
    lines.append(f"Status: {report['status']}")
    lines.append(f"Timestamp: {report['timestamp']}")
    lines.append(f"Total Datasets: {report['total_datasets']}")
    lines.append(f"Datasets Matched: {report['datasets_matched']}")
    lines.append(f"Datasets Mismatched: {report['datasets_mismatched']}")
    lines.append(f"Runs Failed: {report['datasets_failed']}")
    lines.append("")

    lines.append("SUMMARY")
    lines.append("-" * 80)
    lines.append(report['summary'])
    lines.append("")

    if report['runs']:
        lines.append("RUNS")
        lines.append("-" * 80)
        for run in report['runs']:
            lines.extend(_format_run(run))
            lines.append("")

    if report['discrepancies']:
        lines.append("DISCREPANCIES")
        lines.append("-" * 80)

        for disc in report['discrepancies']:
            lines.append(f"Dataset: {disc['dataset_id']} (run {disc['run_id']})")
            lines.append(f"  Issue: {disc['issue_type']}")
            lines.append(f"  Severity: {disc['severity']}")
            lines.append(f"  Details: {disc['details']}")
            lines.append("")

    if report['recommendations']:
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 80)
        for i, rec in enumerate(report['recommendations'], 1):
            lines.append(f"{i}. {rec}")
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)

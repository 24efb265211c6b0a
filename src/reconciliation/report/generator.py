"""
Report generation for completed reconciliation runs.

Turns one or more runs into a report dictionary with discrepancy details
and actionable recommendations, ready to be rendered by `formatters`.
"""

from datetime import UTC, datetime
from typing import Any

from reconciliation.api.models import RunApiModel
from reconciliation.recrun import ReconciliationRun, RecordMatchStatus, RunStatus


class DiscrepancyType:
    """Constants for discrepancy types."""

    SOURCE_ONLY = "SOURCE_ONLY"
    TARGET_ONLY = "TARGET_ONLY"
    BOTH_MISMATCHED = "BOTH_MISMATCHED"
    RUN_FAILED = "RUN_FAILED"


_BUCKETS = (
    (DiscrepancyType.SOURCE_ONLY, "source_only", RecordMatchStatus.SOURCE_ONLY),
    (DiscrepancyType.TARGET_ONLY, "target_only", RecordMatchStatus.TARGET_ONLY),
    (DiscrepancyType.BOTH_MISMATCHED, "both_mismatched", RecordMatchStatus.BOTH_MISMATCHED),
)


def _run_discrepancies(
    run: ReconciliationRun,
    samples: dict[RecordMatchStatus, list[str]] | None,
) -> list[dict[str, Any]]:
    if run.status == RunStatus.FAILED:
        return [{
            "dataset_id": run.dataset_id,
            "run_id": run.id,
            "issue_type": DiscrepancyType.RUN_FAILED,
            "severity": "CRITICAL",
            "details": {"failure_cause": run.failure_cause},
        }]

    if run.summary is None:
        return []

    discrepancies = []
    for issue_type, attribute, status in _BUCKETS:
        count = getattr(run.summary, attribute)
        if count == 0:
            continue
        details = {"count": count, "total": run.summary.total}
        if samples:
            details["sample_keys"] = samples.get(status, [])
        discrepancies.append({
            "dataset_id": run.dataset_id,
            "run_id": run.id,
            "issue_type": issue_type,
            "severity": _calculate_severity(run.summary.total, count),
            "details": details,
        })
    return discrepancies


def generate_report(
    runs: list[ReconciliationRun],
    samples: dict[int, dict[RecordMatchStatus, list[str]]] | None = None,
) -> dict[str, Any]:
    """
    Generate a reconciliation report from finished runs

    Args:
        runs: Runs to report on, one per dataset
        samples: Optional example keys per run id, as returned by
            `RecordStore.sample_keys_by_status`

    Returns:
        Dictionary containing:
        - status: PASS, FAIL, ERROR or NO_DATA
        - total_datasets / datasets_matched / datasets_mismatched / datasets_failed
        - runs: API representation of every run
        - discrepancies: List of discrepancy details
        - summary: Human-readable summary
        - recommendations: List of recommended actions
        - timestamp: Report generation timestamp
    """
    samples = samples or {}
    timestamp = datetime.now(UTC).isoformat()

    if not runs:
        return {
            "status": "NO_DATA",
            "total_datasets": 0,
            "datasets_matched": 0,
            "datasets_mismatched": 0,
            "datasets_failed": 0,
            "runs": [],
            "discrepancies": [],
            "summary": "No reconciliation runs to report",
            "recommendations": [],
            "timestamp": timestamp,
        }

    matched = mismatched = failed = 0
    discrepancies = []

    for run in runs:
        if run.status == RunStatus.FAILED:
            failed += 1
        elif run.summary is not None and run.summary.both_matched == run.summary.total:
            matched += 1
        else:
            mismatched += 1
        discrepancies.extend(_run_discrepancies(run, samples.get(run.id)))

    if failed:
        status = "ERROR"
    elif mismatched:
        status = "FAIL"
    else:
        status = "PASS"

    return {
        "status": status,
        "total_datasets": len(runs),
        "datasets_matched": matched,
        "datasets_mismatched": mismatched,
        "datasets_failed": failed,
        "runs": [
            RunApiModel.from_run(run, samples.get(run.id)).model_dump(by_alias=True, mode="json")
            for run in runs
        ],
        "discrepancies": discrepancies,
        "summary": _generate_summary(len(runs), matched, mismatched, failed),
        "recommendations": _generate_recommendations(discrepancies),
        "timestamp": timestamp,
    }


def _calculate_severity(total: int, count: int) -> str:
    """
    Calculate severity level from the share of keys affected

    Args:
        total: Number of distinct migration keys in the run
        count: Number of keys in the discrepancy bucket

    Returns:
        Severity level: LOW, MEDIUM, HIGH, or CRITICAL
    """
    if total == 0:
        return "LOW" if count == 0 else "CRITICAL"

    percentage = (count / total) * 100

    if percentage < 0.1:
        return "LOW"
    elif percentage < 1.0:
        return "MEDIUM"
    elif percentage < 10.0:
        return "HIGH"
    else:
        return "CRITICAL"


def _generate_summary(total: int, matched: int, mismatched: int, failed: int) -> str:
    if mismatched == 0 and failed == 0:
        return f"All {total} datasets passed reconciliation. Data is consistent."

    parts = []
    if mismatched:
        parts.append(f"Reconciliation found discrepancies in {mismatched} of {total} datasets.")
    if failed:
        parts.append(f"{failed} of {total} runs failed.")
    parts.append(f"{matched} datasets are consistent.")
    return " ".join(parts)


def _generate_recommendations(discrepancies: list[dict[str, Any]]) -> list[str]:
    """
    Generate actionable recommendations based on discrepancies

    Args:
        discrepancies: List of discrepancy details

    Returns:
        List of recommendation strings
    """
    if not discrepancies:
        return ["Data is consistent. Continue running scheduled reconciliations."]

    recommendations = []

    def total_for(issue_type: str) -> int:
        return sum(d["details"]["count"] for d in discrepancies if d["issue_type"] == issue_type)

    source_only = total_for(DiscrepancyType.SOURCE_ONLY)
    if source_only:
        recommendations.append(
            f"{source_only} rows exist only in the source. "
            "Check that the migration loaded every row and that both queries select the same scope."
        )

    target_only = total_for(DiscrepancyType.TARGET_ONLY)
    if target_only:
        recommendations.append(
            f"{target_only} rows exist only in the target. "
            "Investigate duplicate inserts or rows written to the target after migration."
        )

    mismatched = total_for(DiscrepancyType.BOTH_MISMATCHED)
    if mismatched:
        recommendations.append(
            f"{mismatched} rows differ between source and target. "
            "Compare the column types of both sides; coerce types in the dataset queries "
            "or use the TypeLenient hashing strategy if only numeric widths differ."
        )

    failures = [d for d in discrepancies if d["issue_type"] == DiscrepancyType.RUN_FAILED]
    if failures:
        recommendations.append(
            f"{len(failures)} run(s) failed. Review the failure cause and datasource connectivity."
        )

    return recommendations

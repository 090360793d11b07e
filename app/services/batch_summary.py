"""Batch summary, computed once at finalization from every result row of a job."""
from collections import Counter
from collections.abc import Sequence

from app.models import ImageAnalysisResult
from app.models.image_result import RESULT_FAILED
from app.schemas.analysis import BatchSummary, IssueCount

MAX_COMMON_ISSUES = 5
MAX_PRIORITY_RECOMMENDATIONS = 8


def _ranked(counts: Counter) -> list[tuple[str, int]]:
    # Counter keeps first-seen order; sorted() is stable, so ties stay in that order
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def extract_common_issues(results: Sequence[ImageAnalysisResult], limit: int = MAX_COMMON_ISSUES) -> list[IssueCount]:
    issues: Counter = Counter()
    for result in results:
        disease = result.disease_analysis or {}
        if disease.get("diseases_detected"):
            for label in disease.get("disease_types") or []:
                issues[label] += 1
        pest = result.pest_analysis or {}
        if pest.get("pests_detected"):
            for label in pest.get("pest_types") or []:
                issues[label] += 1
    return [IssueCount(issue=issue, count=count) for issue, count in _ranked(issues)[:limit]]


def extract_priority_recommendations(
    results: Sequence[ImageAnalysisResult], limit: int = MAX_PRIORITY_RECOMMENDATIONS
) -> list[str]:
    recommendations: Counter = Counter()
    for result in results:
        for rec in result.recommendations or []:
            recommendations[rec] += 1
    return [rec for rec, _ in _ranked(recommendations)[:limit]]


def summarize(results: Sequence[ImageAnalysisResult]) -> BatchSummary:
    """
    `results` should be in image order (JobStore.list_results) so the rankings
    are reproducible. Failed rows only count towards failed_analyses.
    """
    successful = [r for r in results if r.status != RESULT_FAILED]
    average = None
    if successful:
        average = sum(r.overall_score or 0 for r in successful) / len(successful)
    return BatchSummary(
        total_images=len(results),
        successful_analyses=len(successful),
        failed_analyses=len(results) - len(successful),
        average_health_score=average,
        common_issues=extract_common_issues(successful),
        priority_recommendations=extract_priority_recommendations(successful),
    )

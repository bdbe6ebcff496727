"""
Turn phase timing and cross-quest metrics aggregation.

Usage:
    from questweaver.utils.metrics import PhaseTimer

    timer = PhaseTimer()
    timer.start("assembly")
    ...
    timer.end("assembly")
    timer.durations  # {"assembly": 0.0021}
"""

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from questweaver.utils.logger import get_logger

logger = get_logger(__name__)


class PhaseTimer:
    """
    Time the phases of one turn (assembly, generation, validation, logging).

    A phase that is started twice keeps accumulating, so retried sub-steps
    are reported as one total.
    """

    def __init__(self):
        self.durations: Dict[str, float] = {}
        self.start_times: Dict[str, float] = {}

    def start(self, phase: str):
        self.start_times[phase] = time.perf_counter()

    def end(self, phase: str) -> float:
        if phase not in self.start_times:
            logger.warning(f"[Metrics] No start time for phase: {phase}")
            return 0.0

        elapsed = time.perf_counter() - self.start_times.pop(phase)
        self.durations[phase] = self.durations.get(phase, 0.0) + elapsed
        logger.debug(
            f"[Metrics] Phase {phase} took {elapsed:.3f}s",
            extra={"component": "Metrics", "phase": phase, "duration_s": elapsed},
        )
        return elapsed

    def get(self, phase: str) -> float:
        return self.durations.get(phase, 0.0)

    def elapsed(self, phase: str) -> float:
        """Recorded time plus the running time of a phase still in progress"""
        running = 0.0
        if phase in self.start_times:
            running = time.perf_counter() - self.start_times[phase]
        return self.get(phase) + running

    @property
    def total(self) -> float:
        return sum(self.durations.values())


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class MetricsCollector:
    """
    Aggregate per-quest narrative reports across quests.

    Reports are any pydantic models carrying the report fields written by
    the transition logger; they are stored as plain dicts.
    """

    def __init__(self):
        self.reports: List[Dict[str, Any]] = []

    def record(self, report: BaseModel):
        data = report.model_dump(mode="json")
        self.reports.append(data)
        logger.info(
            f"[Metrics] Recorded report for quest {data.get('quest_id')}",
            extra={"component": "Metrics", "quest_count": len(self.reports)},
        )

    def get_summary(self) -> Dict[str, Any]:
        """
        Get summary statistics across all recorded quests.

        Returns:
            Dictionary with averages and merged issue counts
        """
        if not self.reports:
            return {
                "quest_count": 0,
                "total_turns": 0,
                "avg_consistency": 0.0,
                "avg_tokens": 0.0,
                "avg_generation_time": 0.0,
                "issues_by_kind": {},
                "completion_rate": 0.0,
            }

        issues: Dict[str, int] = {}
        for report in self.reports:
            for kind, count in report.get("issue_counts", {}).items():
                issues[kind] = issues.get(kind, 0) + count

        completed = [r for r in self.reports if r.get("completed")]

        return {
            "quest_count": len(self.reports),
            "total_turns": sum(r.get("turn_count", 0) for r in self.reports),
            "avg_consistency": _mean([r.get("average_consistency", 0.0) for r in self.reports]),
            "avg_tokens": _mean([r.get("average_tokens", 0.0) for r in self.reports]),
            "avg_generation_time": _mean(
                [r.get("average_generation_time", 0.0) for r in self.reports]
            ),
            "issues_by_kind": issues,
            "completion_rate": len(completed) / len(self.reports),
        }

    def lowest_consistency(self, limit: int = 5) -> List[Dict[str, Any]]:
        ranked = sorted(self.reports, key=lambda r: r.get("average_consistency", 0.0))
        return ranked[:limit]

    def reset(self, quest_id: Optional[str] = None):
        if quest_id is None:
            self.reports = []
        else:
            self.reports = [r for r in self.reports if r.get("quest_id") != quest_id]
        logger.info("[Metrics] Reset collected reports")

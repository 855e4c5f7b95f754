from typing import List, Optional, Tuple

from ..core.config import settings
from ..models.attempt import ExamAttempt, Violation, ViolationType


class ViolationLedger:
    """Append-only view over an attempt's violations.

    Entries are never edited or removed; the tab-switch counter on the
    attempt is kept in step with appends.
    """

    def __init__(self, attempt: ExamAttempt):
        self._attempt = attempt

    def append(self, violation: Violation) -> Violation:
        self._attempt.violations.append(violation)
        if violation.violation_type == ViolationType.TAB_SWITCH:
            self._attempt.tab_switches = (self._attempt.tab_switches or 0) + 1
        return violation

    def count(self) -> int:
        return len(self._attempt.violations)

    def tab_switch_count(self) -> int:
        return sum(1 for v in self._attempt.violations if v.violation_type == ViolationType.TAB_SWITCH)

    def entries(self) -> Tuple[Violation, ...]:
        return tuple(self._attempt.violations)


def effective_tab_switch_limit(exam) -> int:
    limit = getattr(exam, "tab_switch_limit", None) if exam is not None else None
    return limit or settings.default_tab_switch_limit


# Two independent flag checks run at different points of the lifecycle.
# They use different thresholds and produce different reasons; neither
# ever clears a flag.

def violation_flag_reason(violation_count: int, limit: int) -> Optional[str]:
    """Checked on every recorded violation."""
    if violation_count >= limit * 2:
        return f"Auto-flagged: {violation_count} violations"
    return None


def submit_flag_reason(violation_count: int, tab_switches: int, limit: int) -> Optional[str]:
    """Checked once, at submission."""
    if tab_switches >= limit or violation_count >= limit:
        return f"Exceeded violation limit: {violation_count} violations, {tab_switches} tab switches"
    return None


def apply_flag(attempt: ExamAttempt, reason: Optional[str]) -> bool:
    """Set the flag and its reason when ``reason`` is given; an existing flag stays set."""
    if reason is None:
        return False
    attempt.flagged = True
    attempt.flag_reason = reason
    return True


def summarize_violations(violations: List[Violation]) -> dict:
    stats = {
        "total_violations": len(violations),
        "by_type": {},
        "by_severity": {"low": 0, "medium": 0, "high": 0, "critical": 0},
    }
    for violation in violations:
        stats["by_type"][violation.violation_type] = stats["by_type"].get(violation.violation_type, 0) + 1
        if violation.severity in stats["by_severity"]:
            stats["by_severity"][violation.severity] += 1
    return stats

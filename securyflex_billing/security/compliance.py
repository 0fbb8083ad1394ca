import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from securyflex_billing.domain.authentication import ChallengeStatus
from securyflex_billing.domain.payments import AttemptOutcome
from securyflex_billing.domain.subscriptions import add_months
from securyflex_billing.utils.clock import utcnow

logger = logging.getLogger(__name__)

DECISION_ACTIONS = ("sca.required", "sca.exempted")


def period_bounds(period: str):
    """``YYYY-MM`` to the half-open window [first of month, first of next month)."""
    try:
        start = datetime.strptime(period, "%Y-%m")
    except ValueError:
        raise ValueError(f"Invalid report period {period!r}, expected YYYY-MM")
    return start, add_months(start)


def _rate(part, whole) -> float:
    return round(part / whole, 4) if whole else 0.0


@dataclass(frozen=True)
class ComplianceReport:
    period: str
    generated_at: datetime
    transactions: dict = field(default_factory=dict)
    authentication: dict = field(default_factory=dict)
    challenges: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "generated_at": self.generated_at.isoformat(),
            "report_type": "psd2_compliance",
            "transactions": self.transactions,
            "authentication": self.authentication,
            "challenges": self.challenges,
        }


class ComplianceReporter:
    """
    Monthly strong customer authentication report.

    Counts payment attempts, gate decisions (required vs exempted, by reason)
    and challenge outcomes for one calendar month. Generating a report is
    itself audited.
    """

    def __init__(self, ledger, challenges, audit, clock=utcnow):
        self.ledger = ledger
        self.challenges = challenges
        self.audit = audit
        self.clock = clock

    def generate(self, period: str) -> ComplianceReport:
        start, end = period_bounds(period)
        now = self.clock()

        report = ComplianceReport(
            period=period,
            generated_at=now,
            transactions=self._transactions(start, end),
            authentication=self._decisions(start, end),
            challenges=self._challenges(start, end, now),
        )

        self.audit.record("compliance.report", subject_id=period, details=report.to_dict())
        logger.info(f"Compliance report generated for {period}")
        return report

    def _transactions(self, start, end) -> dict:
        attempts = self.ledger.created_between(start, end)
        outcomes = Counter(attempt.outcome for attempt in attempts)
        captured = [a for a in attempts if a.outcome == AttemptOutcome.CAPTURED]
        volume = sum((a.amount for a in captured), Decimal("0.00"))
        settled = outcomes[AttemptOutcome.CAPTURED] + outcomes[AttemptOutcome.DECLINED]

        return {
            "total_attempts": len(attempts),
            "captured": outcomes[AttemptOutcome.CAPTURED],
            "declined": outcomes[AttemptOutcome.DECLINED],
            "pending": outcomes[AttemptOutcome.PENDING],
            "authentication_required": outcomes[AttemptOutcome.AUTHENTICATION_REQUIRED],
            "captured_volume": str(volume),
            "success_rate": _rate(outcomes[AttemptOutcome.CAPTURED], settled),
        }

    def _decisions(self, start, end) -> dict:
        entries = self.audit.entries_between(DECISION_ACTIONS, start, end)
        required = [e for e in entries if e.action == "sca.required"]
        exempted = [e for e in entries if e.action == "sca.exempted"]

        return {
            "decisions": len(entries),
            "required": len(required),
            "exempted": len(exempted),
            "required_by_reason": dict(Counter((e.details or {}).get("reason") for e in required)),
            "exemption_rate": _rate(len(exempted), len(entries)),
        }

    def _challenges(self, start, end, now) -> dict:
        issued = self.challenges.created_between(start, end)
        statuses = Counter()
        methods = Counter()
        for challenge in issued:
            status = challenge.status
            # Nobody answered before the deadline.
            if status == ChallengeStatus.PENDING and challenge.is_expired(now):
                status = ChallengeStatus.EXPIRED
            statuses[status] += 1
            methods.update(method.value for method in challenge.methods)

        return {
            "issued": len(issued),
            "completed": statuses[ChallengeStatus.COMPLETED],
            "failed": statuses[ChallengeStatus.FAILED],
            "expired": statuses[ChallengeStatus.EXPIRED],
            "pending": statuses[ChallengeStatus.PENDING],
            "success_rate": _rate(statuses[ChallengeStatus.COMPLETED], len(issued)),
            "methods_offered": dict(methods),
        }

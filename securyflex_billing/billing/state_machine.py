from securyflex_billing.domain.subscriptions import Subscription, SubscriptionStatus
from securyflex_billing.errors import InvalidStateTransition

S = SubscriptionStatus

ALLOWED_TRANSITIONS = {
    S.INCOMPLETE: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELED}),
    S.TRIALING: frozenset({S.ACTIVE, S.INCOMPLETE, S.EXPIRED, S.CANCELED}),
    S.ACTIVE: frozenset({S.PAST_DUE, S.CANCELED}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.UNPAID, S.CANCELED}),
    S.UNPAID: frozenset({S.ACTIVE, S.CANCELED}),
    S.CANCELED: frozenset(),
    S.EXPIRED: frozenset(),
}


class SubscriptionStateMachine:
    """
    Authoritative subscription state machine.

    This class is the ONLY place where a subscription's status changes.
    Every method takes the current record and returns the next one; the
    caller persists it inside the store's read-modify-write.

    Canceled has no regular exits. ``apply_resume`` reopens it while the
    subscription is still usable.
    """

    def __init__(self, manual_review_failures: int = 3):
        self.manual_review_failures = manual_review_failures

    @staticmethod
    def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[current]

    @classmethod
    def transition(cls, subscription: Subscription, target: SubscriptionStatus, now, **changes) -> Subscription:
        # Re-asserting the current status (e.g. past_due -> past_due) is a no-op transition.
        if subscription.status != target and not cls.can_transition(subscription.status, target):
            raise InvalidStateTransition(
                f"Cannot move subscription {subscription.id} from "
                f"{subscription.status.value} to {target.value}",
                subscription_id=subscription.id,
                from_status=subscription.status.value,
                to_status=target.value,
            )
        return subscription.with_changes(status=target, updated_at=now, **changes)

    def apply_capture(self, subscription: Subscription, now) -> Subscription:
        if subscription.payment_method is None:
            raise InvalidStateTransition(
                "Subscription activation requires a payment method",
                subscription_id=subscription.id,
            )
        return self.transition(
            subscription,
            S.ACTIVE,
            now,
            failure_count=0,
            last_failure_reason=None,
            last_failure_at=None,
            requires_manual_review=False,
            last_payment_date=now,
            next_payment_date=subscription.next_due_after_capture(now),
        )

    def apply_decline(self, subscription: Subscription, reason: str, now) -> Subscription:
        failures = subscription.failure_count + 1

        if subscription.status == S.TRIALING:
            # A trial never falls straight into past_due.
            target = S.INCOMPLETE
        elif failures >= self.manual_review_failures and subscription.status in (S.PAST_DUE, S.UNPAID):
            target = S.UNPAID
        else:
            target = S.PAST_DUE if subscription.status != S.UNPAID else S.UNPAID

        return self.transition(
            subscription,
            target,
            now,
            failure_count=failures,
            last_failure_reason=reason,
            last_failure_at=now,
            requires_manual_review=subscription.requires_manual_review or target == S.UNPAID,
            # Dunning counts days overdue from here.
            next_payment_date=subscription.next_payment_date or now,
        )

    def apply_cancel(self, subscription: Subscription, now, end_date, reason=None) -> Subscription:
        return self.transition(
            subscription,
            S.CANCELED,
            now,
            canceled_at=now,
            end_date=end_date,
            cancel_reason=reason,
        )

    def apply_trial_expiry(self, subscription: Subscription, now) -> Subscription:
        return self.transition(subscription, S.EXPIRED, now, end_date=subscription.trial_end_date)

    def apply_resume(self, subscription: Subscription, now) -> Subscription:
        """The one way out of canceled: undo a cancellation before it takes effect."""
        if subscription.status != S.CANCELED or not subscription.is_usable(now):
            raise InvalidStateTransition(
                f"Subscription {subscription.id} cannot be resumed from {subscription.status.value}",
                subscription_id=subscription.id,
                from_status=subscription.status.value,
                to_status=S.ACTIVE.value,
            )
        return subscription.with_changes(
            status=S.ACTIVE,
            updated_at=now,
            end_date=None,
            canceled_at=None,
            cancel_reason=None,
        )

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from securyflex_billing.billing.state_machine import SubscriptionStateMachine
from securyflex_billing.domain.payments import (
    AttemptOutcome,
    CaptureResult,
    CaptureStatus,
    PaymentAttempt,
    PaymentOutcome,
    PaymentPurpose,
)
from securyflex_billing.domain.subscriptions import (
    PaymentMethodType,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    TierChange,
    billing_period,
    trial_length,
)
from securyflex_billing.errors import (
    AlreadySubscribedError,
    InvalidStateError,
    MissingPaymentMethodError,
    NoEnrolledFactorsError,
    SubscriptionNotFoundError,
    TerminalSubscriptionError,
    TransientGatewayError,
)
from securyflex_billing.logging_config import billing_context
from securyflex_billing.notifications import NotificationKind
from securyflex_billing.utils.clock import utcnow
from securyflex_billing.utils.idempotency import payment_idempotency_key

logger = logging.getLogger(__name__)

CAPTURE_OUTCOMES = {
    CaptureStatus.CAPTURED: AttemptOutcome.CAPTURED,
    CaptureStatus.DECLINED: AttemptOutcome.DECLINED,
    CaptureStatus.PENDING: AttemptOutcome.PENDING,
}


class SubscriptionLifecycleManager:
    """
    Owns the subscription record and drives it through its lifecycle.

    Every status change goes through ``SubscriptionStateMachine`` inside the
    store's read-modify-write, and every payment call holds the
    per-subscription lock for its full duration.
    """

    def __init__(self, subscriptions, ledger, gateway, gate, dunning, locks,
                 notifications, audit, state_machine: SubscriptionStateMachine = None,
                 capture_timeout: float = 30.0, trial_reminders=None,
                 trial_reminder_days=(7, 3, 1), metrics=None, clock=utcnow):
        self.subscriptions = subscriptions
        self.ledger = ledger
        self.gateway = gateway
        self.gate = gate
        self.dunning = dunning
        self.locks = locks
        self.notifications = notifications
        self.audit = audit
        self.state_machine = state_machine or SubscriptionStateMachine()
        self.capture_timeout = capture_timeout
        self.trial_reminders = trial_reminders
        self.trial_reminder_days = tuple(sorted(trial_reminder_days, reverse=True))
        self.metrics = metrics
        self.clock = clock

    # Creation and lookup

    def create_subscription(self, user_id: str, tier, start_trial: bool = True,
                            payment_method: str = None,
                            payment_method_type: PaymentMethodType = None,
                            btw_exempt: bool = False) -> Subscription:
        tier = SubscriptionTier(tier)
        existing = self.subscriptions.find_open_for_user(user_id)
        if existing is not None:
            raise AlreadySubscribedError(
                f"User {user_id} already has subscription {existing.id} ({existing.status.value})",
                user_id=user_id,
                subscription_id=existing.id,
            )

        now = self.clock()
        if start_trial and tier.offers_trial:
            status = SubscriptionStatus.TRIALING
            trial_end = now + trial_length(tier)
            next_payment = trial_end
        else:
            status = SubscriptionStatus.INCOMPLETE
            trial_end = None
            next_payment = None

        subscription = self.subscriptions.add(Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            tier=tier,
            status=status,
            start_date=now,
            monthly_price=tier.plan.monthly_price,
            trial_end_date=trial_end,
            next_payment_date=next_payment,
            payment_method=payment_method,
            payment_method_type=PaymentMethodType(payment_method_type) if payment_method_type else None,
            btw_exempt=btw_exempt,
            created_at=now,
            updated_at=now,
        ))

        self.audit.record(
            "subscription.created",
            subject_id=subscription.id,
            actor_id=user_id,
            details={
                "tier": tier.value,
                "status": status.value,
                "trial_end_date": trial_end,
                "monthly_price": subscription.monthly_price,
            },
        )
        logger.info(f"Subscription {subscription.id} created for user {user_id} ({status.value})")
        return subscription

    def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return subscription

    def get_active_subscription(self, user_id: str) -> Optional[Subscription]:
        return self.subscriptions.find_open_for_user(user_id)

    def is_usable(self, subscription: Subscription, at: datetime = None) -> bool:
        return subscription.is_usable(at or self.clock())

    # Payment pipeline

    async def process_recurring_payment(self, subscription_id: str, auth_token: str = None) -> PaymentOutcome:
        async with self.locks.hold(subscription_id):
            with billing_context(subscription_id):
                outcome = await self._process_locked(subscription_id, auth_token)

        if self.metrics is not None and not outcome.duplicate:
            self.metrics.record_attempt(outcome.outcome.value)
        return outcome

    async def _process_locked(self, subscription_id: str, auth_token: Optional[str]) -> PaymentOutcome:
        now = self.clock()
        subscription = self.get_subscription(subscription_id)

        if subscription.status.is_terminal:
            raise TerminalSubscriptionError(
                f"Subscription {subscription_id} is {subscription.status.value}",
                subscription_id=subscription_id,
            )
        if not subscription.payment_method:
            raise MissingPaymentMethodError(
                f"Subscription {subscription_id} has no payment method",
                subscription_id=subscription_id,
            )

        # Bill the period the due date falls in, not the processing month.
        due = subscription.next_payment_date
        if due is not None and due <= now:
            period = billing_period(due)
        else:
            period = billing_period(now)

        if subscription.status == SubscriptionStatus.ACTIVE:
            if due is not None and due > now:
                prior = self.ledger.latest_captured(subscription_id)
            else:
                prior = self.ledger.captured_in_period(subscription_id, period)
            if prior is not None:
                logger.info(f"Subscription {subscription_id} already captured for {prior.billing_period}")
                return PaymentOutcome(
                    subscription_id=subscription_id,
                    outcome=AttemptOutcome.CAPTURED,
                    attempt=prior,
                    subscription_status=subscription.status.value,
                    failure_count=subscription.failure_count,
                    duplicate=True,
                    message=f"Already captured for period {prior.billing_period}",
                )

        amount = subscription.billing_amount
        decision = self.gate.evaluate(
            subscription.user_id,
            amount,
            subscription.payment_method_type,
            subscription_id=subscription_id,
        )

        attempt_number = self.ledger.terminal_attempts_in_period(subscription_id, period) + 1

        if decision.required and not (auth_token and self.gate.verify_token(auth_token, subscription.user_id)):
            return self._require_authentication(subscription, decision, period, attempt_number, now)

        idempotency_key = payment_idempotency_key(subscription_id, period, attempt_number)
        result = await self._capture(subscription, amount, idempotency_key)

        attempt = self.ledger.append(PaymentAttempt(
            id=str(uuid.uuid4()),
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            amount=amount,
            currency=subscription.currency,
            created_at=now,
            billing_period=period,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            outcome=CAPTURE_OUTCOMES[result.status],
            provider_reference=result.provider_reference,
            failure_reason=result.failure_reason,
            risk_score=decision.risk_score,
        ))

        if result.status == CaptureStatus.CAPTURED:
            updated = self._apply_capture(subscription, attempt, now)
        elif result.status == CaptureStatus.DECLINED:
            updated = self._apply_decline(subscription, attempt, now)
        else:
            updated = subscription
            self.audit.record(
                "payment.pending",
                subject_id=subscription_id,
                details={"attempt_id": attempt.id, "reason": result.failure_reason},
            )
            logger.warning(f"Capture pending for subscription {subscription_id}: {result.failure_reason}")

        return PaymentOutcome(
            subscription_id=subscription_id,
            outcome=attempt.outcome,
            attempt=attempt,
            subscription_status=updated.status.value,
            failure_count=updated.failure_count,
            message=result.failure_reason,
        )

    async def _capture(self, subscription: Subscription, amount, idempotency_key: str) -> CaptureResult:
        try:
            if self.metrics is not None:
                with self.metrics.observe_capture():
                    return await self._capture_with_timeout(subscription, amount, idempotency_key)
            return await self._capture_with_timeout(subscription, amount, idempotency_key)
        except asyncio.TimeoutError:
            logger.warning(f"Capture timed out after {self.capture_timeout}s")
            return CaptureResult.pending("capture timed out")
        except TransientGatewayError as e:
            logger.warning(f"Payment provider unavailable: {e}")
            return CaptureResult.pending(str(e))

    async def _capture_with_timeout(self, subscription: Subscription, amount, idempotency_key: str) -> CaptureResult:
        return await asyncio.wait_for(
            self.gateway.capture(amount, subscription.currency, subscription.payment_method, idempotency_key),
            timeout=self.capture_timeout,
        )

    def _require_authentication(self, subscription: Subscription, decision, period: str,
                                attempt_number: int, now, amount: Decimal = None,
                                purpose: PaymentPurpose = PaymentPurpose.RENEWAL) -> PaymentOutcome:
        amount = subscription.billing_amount if amount is None else amount
        attempt_id = str(uuid.uuid4())
        challenge_id = None
        try:
            challenge = self.gate.create_challenge(
                subscription.user_id,
                amount,
                subscription_id=subscription.id,
                attempt_id=attempt_id,
            )
            challenge_id = challenge.id
        except NoEnrolledFactorsError:
            logger.warning(f"User {subscription.user_id} cannot be challenged: factors not enrolled")

        attempt = self.ledger.append(PaymentAttempt(
            id=attempt_id,
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            amount=amount,
            currency=subscription.currency,
            created_at=now,
            billing_period=period,
            attempt_number=attempt_number,
            idempotency_key=None,
            outcome=AttemptOutcome.AUTHENTICATION_REQUIRED,
            challenge_id=challenge_id,
            risk_score=decision.risk_score,
            purpose=purpose,
        ))

        self.audit.record(
            "payment.authentication_required",
            subject_id=subscription.id,
            details={
                "attempt_id": attempt.id,
                "challenge_id": challenge_id,
                "reason": decision.reason.value,
                "risk_score": decision.risk_score,
                "purpose": purpose.value,
            },
        )
        return PaymentOutcome(
            subscription_id=subscription.id,
            outcome=AttemptOutcome.AUTHENTICATION_REQUIRED,
            attempt=attempt,
            subscription_status=subscription.status.value,
            failure_count=subscription.failure_count,
            authentication_reason=decision.reason.value,
            message="Strong customer authentication required",
        )

    def _apply_capture(self, subscription: Subscription, attempt: PaymentAttempt, now) -> Subscription:
        updated = self.subscriptions.update(
            subscription.id, lambda current: self.state_machine.apply_capture(current, now)
        )
        self.dunning.handle_capture(updated)

        self.audit.transition(
            subscription.id,
            subscription.status.value,
            updated.status.value,
            attempt_id=attempt.id,
            amount=attempt.amount,
            next_payment_date=updated.next_payment_date,
        )
        self.notifications.notify(
            subscription.user_id,
            NotificationKind.PAYMENT_SUCCEEDED,
            {
                "subscription_id": subscription.id,
                "amount": attempt.amount,
                "currency": attempt.currency,
                "next_payment_date": updated.next_payment_date,
            },
        )
        logger.info(f"Captured {attempt.amount} {attempt.currency} for subscription {subscription.id}")
        return updated

    def _apply_decline(self, subscription: Subscription, attempt: PaymentAttempt, now) -> Subscription:
        updated = self.subscriptions.update(
            subscription.id,
            lambda current: self.state_machine.apply_decline(current, attempt.failure_reason, now),
        )

        self.audit.transition(
            subscription.id,
            subscription.status.value,
            updated.status.value,
            attempt_id=attempt.id,
            reason=attempt.failure_reason,
            failure_count=updated.failure_count,
            requires_manual_review=updated.requires_manual_review,
        )
        self.dunning.handle_decline(updated, attempt)
        logger.info(
            f"Capture declined for subscription {subscription.id}",
            extra={"failure_count": updated.failure_count, "status": updated.status.value},
        )
        return updated

    # Other lifecycle operations

    async def cancel_subscription(self, subscription_id: str, effective_date: datetime = None,
                                  immediate: bool = False, reason: str = None) -> Subscription:
        async with self.locks.hold(subscription_id):
            now = self.clock()
            before = self.get_subscription(subscription_id)

            def cancel(current):
                if current.status.is_terminal:
                    raise TerminalSubscriptionError(
                        f"Subscription {subscription_id} is already {current.status.value}",
                        subscription_id=subscription_id,
                    )
                end_date = now if immediate else (effective_date or current.next_payment_date or now)
                return self.state_machine.apply_cancel(current, now, end_date, reason)

            updated = self.subscriptions.update(subscription_id, cancel)

        skipped = self.dunning.cancel_pending_retries(subscription_id)
        self.audit.transition(
            subscription_id,
            before.status.value,
            updated.status.value,
            reason=reason,
            immediate=immediate,
            end_date=updated.end_date,
            retries_skipped=skipped,
        )
        logger.info(f"Subscription {subscription_id} canceled, usable until {updated.end_date}")
        return updated

    async def resume_subscription(self, subscription_id: str) -> Subscription:
        """Undo a cancellation that has not taken effect yet."""
        async with self.locks.hold(subscription_id):
            now = self.clock()
            before = self.get_subscription(subscription_id)

            other = self.subscriptions.find_open_for_user(before.user_id)
            if other is not None:
                raise AlreadySubscribedError(
                    f"User {before.user_id} already has subscription {other.id} ({other.status.value})",
                    user_id=before.user_id,
                    subscription_id=other.id,
                )

            updated = self.subscriptions.update(
                subscription_id, lambda current: self.state_machine.apply_resume(current, now)
            )

        self.audit.transition(
            subscription_id,
            before.status.value,
            updated.status.value,
            previous_end_date=before.end_date,
            cancel_reason=before.cancel_reason,
        )
        self.notifications.notify(
            updated.user_id,
            NotificationKind.SUBSCRIPTION_RESUMED,
            {"subscription_id": subscription_id, "next_payment_date": updated.next_payment_date},
        )
        logger.info(f"Subscription {subscription_id} resumed")
        return updated

    async def change_tier(self, subscription_id: str, new_tier, prorate: bool = True,
                          auth_token: str = None) -> TierChange:
        """
        Move an active subscription to another tier.

        Moving up charges the prorated difference for the rest of the period
        first; the tier only changes once that charge is captured. Moving down
        applies at once, and the new price is billed from the next due date.
        """
        new_tier = SubscriptionTier(new_tier)
        async with self.locks.hold(subscription_id):
            with billing_context(subscription_id):
                return await self._change_tier_locked(subscription_id, new_tier, prorate, auth_token)

    async def _change_tier_locked(self, subscription_id: str, new_tier: SubscriptionTier,
                                  prorate: bool, auth_token: Optional[str]) -> TierChange:
        now = self.clock()
        subscription = self.get_subscription(subscription_id)

        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidStateError(
                f"Subscription {subscription_id} is {subscription.status.value}, only active "
                f"subscriptions change tier",
                subscription_id=subscription_id,
            )
        if new_tier == subscription.tier:
            raise InvalidStateError(
                f"Subscription {subscription_id} is already on {new_tier.value}",
                subscription_id=subscription_id,
            )

        charge = subscription.prorated_charge(new_tier, now) if prorate else Decimal("0.00")
        payment = None
        if charge > 0:
            payment = await self._charge_proration(subscription, new_tier, charge, auth_token, now)
            if not payment.success:
                self.audit.record(
                    "subscription.tier_change_refused",
                    subject_id=subscription_id,
                    details={
                        "tier": subscription.tier.value,
                        "requested_tier": new_tier.value,
                        "prorated_amount": charge,
                        "outcome": payment.outcome.value,
                    },
                )
                return TierChange(subscription, subscription.tier, charge, payment)

        def switch(current):
            if current.status != SubscriptionStatus.ACTIVE:
                raise InvalidStateError(
                    f"Subscription {subscription_id} is {current.status.value}, only active "
                    f"subscriptions change tier",
                    subscription_id=subscription_id,
                )
            return current.with_changes(
                tier=new_tier,
                monthly_price=new_tier.plan.monthly_price,
                updated_at=now,
            )

        updated = self.subscriptions.update(subscription_id, switch)

        self.audit.record(
            "subscription.tier_changed",
            subject_id=subscription_id,
            actor_id=subscription.user_id,
            details={
                "previous_tier": subscription.tier.value,
                "tier": new_tier.value,
                "monthly_price": updated.monthly_price,
                "prorated_amount": charge,
                "attempt_id": payment.attempt.id if payment else None,
            },
        )
        self.notifications.notify(
            subscription.user_id,
            NotificationKind.TIER_CHANGED,
            {
                "subscription_id": subscription_id,
                "previous_tier": subscription.tier.value,
                "tier": new_tier.value,
                "prorated_amount": charge,
            },
        )
        logger.info(f"Subscription {subscription_id} moved from {subscription.tier.value} to {new_tier.value}")
        return TierChange(updated, subscription.tier, charge, payment)

    async def _charge_proration(self, subscription: Subscription, new_tier: SubscriptionTier,
                                amount: Decimal, auth_token: Optional[str], now) -> PaymentOutcome:
        period = billing_period(now)
        decision = self.gate.evaluate(
            subscription.user_id,
            amount,
            subscription.payment_method_type,
            subscription_id=subscription.id,
        )
        attempt_number = self.ledger.terminal_attempts_in_period(
            subscription.id, period, PaymentPurpose.PRORATION
        ) + 1

        if decision.required and not (auth_token and self.gate.verify_token(auth_token, subscription.user_id)):
            return self._require_authentication(
                subscription, decision, period, attempt_number, now,
                amount=amount, purpose=PaymentPurpose.PRORATION,
            )

        idempotency_key = payment_idempotency_key(subscription.id, f"{period}:{new_tier.value}", attempt_number)
        result = await self._capture(subscription, amount, idempotency_key)
        attempt = self.ledger.append(PaymentAttempt(
            id=str(uuid.uuid4()),
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            amount=amount,
            currency=subscription.currency,
            created_at=now,
            billing_period=period,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            outcome=CAPTURE_OUTCOMES[result.status],
            provider_reference=result.provider_reference,
            failure_reason=result.failure_reason,
            risk_score=decision.risk_score,
            purpose=PaymentPurpose.PRORATION,
        ))
        if self.metrics is not None:
            self.metrics.record_attempt(attempt.outcome.value)

        return PaymentOutcome(
            subscription_id=subscription.id,
            outcome=attempt.outcome,
            attempt=attempt,
            subscription_status=subscription.status.value,
            failure_count=subscription.failure_count,
            message=result.failure_reason,
        )

    async def convert_trial_to_paid(self, subscription_id: str, payment_method: str,
                                    payment_method_type: PaymentMethodType,
                                    auth_token: str = None) -> PaymentOutcome:
        async with self.locks.hold(subscription_id):
            now = self.clock()

            def attach(current):
                if current.status != SubscriptionStatus.TRIALING:
                    raise InvalidStateError(
                        f"Subscription {subscription_id} is {current.status.value}, not trialing",
                        subscription_id=subscription_id,
                    )
                return current.with_changes(
                    payment_method=payment_method,
                    payment_method_type=PaymentMethodType(payment_method_type),
                    trial_converted_at=now,
                    # Converting ends the trial early; billing starts today.
                    next_payment_date=min(current.next_payment_date or now, now),
                    updated_at=now,
                )

            self.subscriptions.update(subscription_id, attach)

        self.audit.record(
            "subscription.trial_conversion",
            subject_id=subscription_id,
            details={"payment_method_type": PaymentMethodType(payment_method_type).value},
        )
        return await self.process_recurring_payment(subscription_id, auth_token=auth_token)

    def update_payment_method(self, subscription_id: str, payment_method: str,
                              payment_method_type: PaymentMethodType) -> Subscription:
        now = self.clock()

        def attach(current):
            if current.status.is_terminal:
                raise TerminalSubscriptionError(
                    f"Subscription {subscription_id} is {current.status.value}",
                    subscription_id=subscription_id,
                )
            return current.with_changes(
                payment_method=payment_method,
                payment_method_type=PaymentMethodType(payment_method_type),
                updated_at=now,
            )

        updated = self.subscriptions.update(subscription_id, attach)
        self.audit.record(
            "subscription.payment_method_updated",
            subject_id=subscription_id,
            details={"payment_method_type": updated.payment_method_type.value},
        )
        return updated

    def expire_trials(self) -> List[str]:
        """Expire trials that ended without a payment method attached."""
        now = self.clock()
        expired = []

        for subscription in self.subscriptions.list_trials_ending(now):
            if subscription.payment_method:
                continue

            def expire(current):
                if current.status != SubscriptionStatus.TRIALING or current.payment_method:
                    return current
                return self.state_machine.apply_trial_expiry(current, now)

            updated = self.subscriptions.update(subscription.id, expire)
            if updated.status != SubscriptionStatus.EXPIRED:
                continue

            expired.append(updated.id)
            self.audit.transition(
                updated.id,
                SubscriptionStatus.TRIALING.value,
                SubscriptionStatus.EXPIRED.value,
                trial_end_date=updated.trial_end_date,
            )
            self.notifications.notify(
                updated.user_id,
                NotificationKind.TRIAL_EXPIRED,
                {"subscription_id": updated.id, "tier": updated.tier.value},
            )

        if expired:
            logger.info(f"Expired {len(expired)} trial(s)")
        return expired

    def get_expiring_trials(self, days_ahead: int = 3) -> List[Subscription]:
        now = self.clock()
        return [
            subscription
            for subscription in self.subscriptions.list_trials_ending(now + timedelta(days=days_ahead))
            if subscription.trial_end_date > now
        ]

    def send_trial_reminders(self) -> List[str]:
        """
        Warn trialing users that their trial is about to end.

        One reminder per threshold in ``trial_reminder_days``; a trial that is
        already inside a closer threshold only gets that one. Returns the ids
        of the subscriptions that were reminded.
        """
        if self.trial_reminders is None or not self.trial_reminder_days:
            return []

        now = self.clock()
        horizon = now + timedelta(days=self.trial_reminder_days[0])
        reminded = []

        for subscription in self.subscriptions.list_trials_ending(horizon):
            trial_end = subscription.trial_end_date
            if trial_end is None or trial_end <= now:
                continue

            remaining = trial_end - now
            days_before = min(d for d in self.trial_reminder_days if remaining <= timedelta(days=d))

            sent = self.trial_reminders.closest_sent(subscription.id, trial_end)
            if sent is not None and sent <= days_before:
                continue
            if not self.trial_reminders.record(subscription.id, trial_end, days_before, now):
                continue

            self.notifications.notify(
                subscription.user_id,
                NotificationKind.TRIAL_ENDING,
                {
                    "subscription_id": subscription.id,
                    "tier": subscription.tier.value,
                    "trial_end_date": trial_end,
                    "days_before": days_before,
                    "has_payment_method": bool(subscription.payment_method),
                },
            )
            self.audit.record(
                "trial.reminder",
                subject_id=subscription.id,
                actor_id=subscription.user_id,
                details={"days_before": days_before, "trial_end_date": trial_end},
            )
            reminded.append(subscription.id)

        if reminded:
            logger.info(f"Sent {len(reminded)} trial reminder(s)")
        return reminded

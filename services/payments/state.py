# services/payments/state.py
"""
Order payment-status state machine.

    pending --(verified webhook)--> paid | failed | cancelled
    paid    --(explicit refund)---> refunded

Re-delivering the status an order already has is a no-op. Moving an
order from one terminal status to a different one is a conflict and is
never applied.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Statuses a webhook may move a pending order into
WEBHOOK_TARGETS = frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED})
TERMINAL = frozenset({PaymentStatus.PAID, PaymentStatus.FAILED,
                      PaymentStatus.CANCELLED, PaymentStatus.REFUNDED})


class Outcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"            # same status delivered again
    CONFLICT = "conflict"    # terminal -> different terminal
    IGNORED = "ignored"      # normalized status was still 'pending'
    NOT_FOUND = "not_found"
    AMOUNT_MISMATCH = "amount_mismatch"


@dataclass(frozen=True)
class TransitionResult:
    outcome: Outcome
    previous: Optional[str]       # status before the attempt (None: no such order)
    current: Optional[str]        # status after the attempt

    @property
    def changed(self) -> bool:
        return self.outcome == Outcome.APPLIED


def plan_webhook_transition(current: str, target: str) -> Outcome:
    """Decide what a verified webhook status does to an order in ``current``."""
    cur = PaymentStatus(current)
    tgt = PaymentStatus(target)
    # refunded is only reachable through an explicit refund
    if tgt not in WEBHOOK_TARGETS:
        return Outcome.IGNORED
    if cur == tgt:
        return Outcome.NOOP
    if cur == PaymentStatus.PENDING:
        return Outcome.APPLIED
    return Outcome.CONFLICT


def can_refund(current: str) -> bool:
    return PaymentStatus(current) == PaymentStatus.PAID

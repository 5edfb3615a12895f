# services/payments/reconciler.py
"""
Single entry point for provider callbacks.

verify -> normalize -> conditional status update -> provider-shaped reply.

Any *verified* callback is acknowledged, whether it changed the order,
repeated what we already knew, or conflicted with it; otherwise the
provider would keep redelivering it. Unverified callbacks get the
provider's generic rejection and change nothing. Neither reply says why.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from models.orders_store import apply_webhook_status
from models.payments_store import record_webhook_event
from services.metrics import TRANSITIONS, WEBHOOK_EVENTS
from services.payments.base import WebhookReply
from services.payments.errors import UnknownProviderError
from services.payments.registry import get_provider, registry
from services.payments.state import Outcome, TransitionResult

log = logging.getLogger(__name__)

NOT_FOUND_REPLY = WebhookReply("Not Found", 404)


@dataclass
class WebhookResult:
    reply: WebhookReply
    verified: bool
    transition: Optional[TransitionResult] = None
    order_number: Optional[str] = None

    @property
    def outcome(self) -> str:
        if not self.verified:
            return "rejected"
        return self.transition.outcome.value if self.transition else "ignored"


def _parse_amount(raw: Any) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return -1  # never matches an order total


def handle_webhook(provider_name: str, fields: Mapping[str, Any]) -> WebhookResult:
    try:
        provider = get_provider(provider_name)
    except UnknownProviderError:
        log.warning("webhook for unknown provider %r", provider_name)
        return WebhookResult(NOT_FOUND_REPLY, verified=False)

    fields = dict(fields)
    if not provider.verify_webhook(fields):
        WEBHOOK_EVENTS.labels(provider=provider.name, outcome="rejected").inc()
        record_webhook_event(provider.name, None, fields, False, outcome="rejected")
        key = f"verify:{provider.name}"
        if registry.limiter.allow(key):
            log.warning("rejected unverified %s callback (%d similar suppressed)",
                        provider.name, registry.limiter.suppressed(key))
        return WebhookResult(provider.reject_response(), verified=False)

    evt = provider.process_webhook(fields)
    result = apply_webhook_status(
        evt.order_number, evt.provider_status,
        provider=provider.name,
        transaction_id=evt.provider_transaction_id,
        amount_minor=_parse_amount(evt.raw_amount),
    )

    TRANSITIONS.labels(from_status=result.previous or "none", to_status=evt.provider_status,
                       outcome=result.outcome.value).inc()
    WEBHOOK_EVENTS.labels(provider=provider.name, outcome=result.outcome.value).inc()

    if result.outcome == Outcome.APPLIED:
        log.info("order %s payment %s -> %s via %s (txn=%s)", evt.order_number,
                 result.previous, result.current, provider.name, evt.provider_transaction_id)
    elif result.outcome == Outcome.NOOP:
        log.info("order %s already %s; duplicate %s callback ignored",
                 evt.order_number, result.current, provider.name)
    elif result.outcome == Outcome.IGNORED:
        log.info("order %s: %s status %r is not final; nothing to do",
                 evt.order_number, provider.name, evt.raw_status)
    elif result.outcome == Outcome.CONFLICT:
        log.error("PAYMENT CONFLICT order %s is %s but verified %s callback says %s (txn=%s)",
                  evt.order_number, result.current, provider.name,
                  evt.provider_status, evt.provider_transaction_id)
    elif result.outcome == Outcome.AMOUNT_MISMATCH:
        log.error("PAYMENT AMOUNT MISMATCH order %s: %s reported amount %r",
                  evt.order_number, provider.name, evt.raw_amount)
    else:
        log.error("verified %s callback for unknown order %r", provider.name, evt.order_number)

    event_id = None
    if evt.provider_transaction_id:
        event_id = f"{evt.provider_transaction_id}:{evt.provider_status}"
    record_webhook_event(provider.name, event_id, evt.metadata, True,
                         order_number=evt.order_number or None,
                         status=evt.provider_status, outcome=result.outcome.value)

    return WebhookResult(provider.ack_response(), verified=True,
                         transition=result, order_number=evt.order_number)

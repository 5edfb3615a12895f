# services/payments/registry.py
import logging
from typing import Callable, Dict

from services.payments.arca import ArcaProvider
from services.payments.base import PaymentProvider
from services.payments.errors import ProviderConfigError, UnknownProviderError
from services.payments.idram import IdramProvider
from services.payments.settings import cfg_int, enabled_providers
from services.rate_limit import RateLimiter

log = logging.getLogger(__name__)

# provider id -> constructor; add real adapters here
PROVIDERS: Dict[str, Callable[[], PaymentProvider]] = {
    "idram": IdramProvider,
    "arca": ArcaProvider,
}


class ProviderRegistry:
    def __init__(self, factories: Dict[str, Callable[[], PaymentProvider]],
                 limiter: RateLimiter | None = None):
        self.factories = dict(factories)
        self.limiter = limiter or RateLimiter(300)

    def names(self) -> list[str]:
        allowed = set(enabled_providers())
        return [n for n in self.factories if n in allowed]

    def get(self, name: str | None) -> PaymentProvider:
        key = (name or "").strip().lower()
        if key not in self.factories or key not in enabled_providers():
            raise UnknownProviderError(key or "<empty>")
        return self.factories[key]()

    def report_config_error(self, err: ProviderConfigError) -> None:
        """Log a missing-credentials error once per throttle window per provider."""
        k = f"config:{err.provider}"
        if self.limiter.allow(k):
            log.error("payment provider %s unavailable: missing %s",
                      err.provider, ", ".join(err.missing) or "credentials")

    def status(self) -> list[dict]:
        return [{"id": n, "configured": self.factories[n]().is_configured()} for n in self.names()]


registry = ProviderRegistry(PROVIDERS)


def get_provider(name: str | None) -> PaymentProvider:
    return registry.get(name)


def init_app(app) -> None:
    with app.app_context():
        registry.limiter.interval_sec = float(cfg_int("PAYMENT_LOG_THROTTLE_SEC", 300))
        for row in registry.status():
            if row["configured"]:
                app.logger.info("payment provider %s configured", row["id"])
            else:
                app.logger.warning("payment provider %s enabled but not configured", row["id"])

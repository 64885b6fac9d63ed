"""Change detection against the last persisted value of each currency."""

from dataclasses import dataclass

from vesrates.database.rate_store import RateStore
from vesrates.models.rates import RateSource


@dataclass(frozen=True)
class ChangeDecision:
    changed: bool
    previous: float | None


class ChangeDetector:
    """
    Decides whether a freshly observed value is new for (source, currency).

    The comparison is exact: any difference, however small, counts as a
    change. The baseline is always the persistent store, never a cache.
    """

    def __init__(self, store: RateStore, source: RateSource):
        self.store = store
        self.source = source

    def evaluate(self, currency: str, new_value: float) -> ChangeDecision:
        previous = self.store.get_last_value(self.source, currency)
        return ChangeDecision(changed=previous is None or previous != new_value, previous=previous)

    def has_changed(self, currency: str, new_value: float) -> bool:
        return self.evaluate(currency, new_value).changed

"""Notification payload handed to the notification trigger."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vesrates.models.rates import RateSource, utcnow


@dataclass
class RateChangePayload:
    """Rates that changed in one refresh, plus the current rates of that source."""

    source: RateSource
    changed: list[str] = field(default_factory=list)
    rates: dict[str, float] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "changed": list(self.changed),
            "rates": dict(self.rates),
            "generated_at": self.generated_at.isoformat(),
        }

"""
Aggregated breaker status for health endpoints and dashboards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from hybrid_query.resilience.events import BreakerEvent, BreakerEventType
from hybrid_query.resilience.state_store import CircuitState, is_distributed_store_active

if TYPE_CHECKING:
    from hybrid_query.resilience.circuit_breaker import CircuitStatus
    from hybrid_query.resilience.registry import BreakerRegistry

RECENT_EVENT_COUNT = 20
STATS_WINDOW_MS = 60 * 60 * 1000


@dataclass
class BreakerStats:
    """Counters over all breakers.

    Attributes:
        total_breakers: Known breakers
        open_breakers: Breakers currently OPEN
        total_failures: Sum of current failure counts
        recent_failovers: Failover events in the last hour
        recent_rate_limits: Rate-limit events in the last hour
    """

    total_breakers: int = 0
    open_breakers: int = 0
    total_failures: int = 0
    recent_failovers: int = 0
    recent_rate_limits: int = 0


@dataclass
class BreakerStatusSummary:
    """Snapshot of every breaker plus recent activity."""

    circuit_breakers: dict[str, CircuitStatus]
    recent_events: list[BreakerEvent]
    state_store: str
    stats: BreakerStats = field(default_factory=BreakerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "circuit_breakers": {
                name: status.to_dict() for name, status in self.circuit_breakers.items()
            },
            "recent_events": [e.model_dump(mode="json") for e in self.recent_events],
            "state_store": self.state_store,
            "stats": {
                "total_breakers": self.stats.total_breakers,
                "open_breakers": self.stats.open_breakers,
                "total_failures": self.stats.total_failures,
                "recent_failovers": self.stats.recent_failovers,
                "recent_rate_limits": self.stats.recent_rate_limits,
            },
        }


def _store_kind(registry: BreakerRegistry) -> str:
    store = registry.state_store
    if store is not None:
        return store.kind
    return "redis" if is_distributed_store_active() else "in-memory"


def get_status_summary(registry: BreakerRegistry) -> BreakerStatusSummary:
    """Summarize breakers and the most recent events of ``registry``."""
    statuses = registry.get_all_status()
    recent = registry.event_log.get_recent_events(RECENT_EVENT_COUNT)
    since = registry.now_ms() - STATS_WINDOW_MS

    stats = BreakerStats(
        total_breakers=len(statuses),
        open_breakers=sum(1 for s in statuses.values() if s.state == CircuitState.OPEN),
        total_failures=sum(s.failures for s in statuses.values()),
        recent_failovers=sum(
            1 for e in recent if e.type == BreakerEventType.FAILOVER and e.timestamp > since
        ),
        recent_rate_limits=sum(
            1 for e in recent if e.type == BreakerEventType.RATE_LIMIT and e.timestamp > since
        ),
    )

    return BreakerStatusSummary(
        circuit_breakers=statuses,
        recent_events=recent,
        state_store=_store_kind(registry),
        stats=stats,
    )

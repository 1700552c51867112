from __future__ import annotations

IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
ONCHAIN_RECORDED = "onchain_recorded"
DELIVERED_ONCHAIN_FAILED = "delivered_onchain_failed"
TIMEOUT = "timeout"

# status -> statuses it may be entered from
_PREDECESSORS: dict[str, frozenset[str]] = {
    IN_TRANSIT: frozenset({IN_TRANSIT}),
    DELIVERED: frozenset({IN_TRANSIT, DELIVERED}),
    ONCHAIN_RECORDED: frozenset({DELIVERED}),
    DELIVERED_ONCHAIN_FAILED: frozenset({DELIVERED}),
    TIMEOUT: frozenset({IN_TRANSIT}),
}

_RANK = {
    IN_TRANSIT: 0,
    DELIVERED: 1,
    ONCHAIN_RECORDED: 2,
    DELIVERED_ONCHAIN_FAILED: 2,
    TIMEOUT: 2,
}

# signal values reported by confirmation endpoints
DELIVERED_SIGNALS = ("delivered", "confirmed")


def allowed_predecessors(status: str) -> frozenset[str]:
    if status not in _PREDECESSORS:
        raise ValueError(f"Unknown delivery status: {status}")
    return _PREDECESSORS[status]


def status_rank(status: str) -> int:
    return _RANK[status]

"""
Prometheus metrics: order lifecycle activity (engine), ledger appends, rejected transitions, lock conflicts.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)
orders_deleted_total = Counter(
    "orders_deleted_total",
    "Total orders hard-deleted (with their tracking history)",
)

# Engine: status changes by edge
order_transitions_total = Counter(
    "order_transitions_total",
    "Total committed order status transitions",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total status transitions rejected by the lifecycle matrix",
    ["current_status", "attempted_status"],
)
order_updates_total = Counter(
    "order_updates_total",
    "Total committed attribute updates (payment, carrier, driver, eta, notes, details)",
    ["kind"],
)

# Ledger
tracking_events_appended_total = Counter(
    "tracking_events_appended_total",
    "Total tracking events committed to the ledger",
)

concurrency_conflicts_total = Counter(
    "concurrency_conflicts_total",
    "Total operations that could not lock their order row in time",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()

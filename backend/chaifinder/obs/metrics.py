"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"chaifinder_http_requests_total",
	"HTTP requests by route, method and status",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"chaifinder_http_request_duration_seconds",
	"HTTP request latency",
	["route", "method"],
)

SOCKET_CLIENTS = Gauge(
	"chaifinder_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"chaifinder_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

RELATIONSHIP_OPS = Counter(
	"chaifinder_relationship_ops_total",
	"Friend graph operations by outcome",
	["op", "result"],
)

FEED_LOADS = Counter(
	"chaifinder_feed_loads_total",
	"Feed loads by requested and served source",
	["requested", "served"],
)

FEED_FAILURES = Counter(
	"chaifinder_feed_failures_total",
	"Feed loads that surfaced an error state",
	["reason"],
)

SPOT_LOOKUPS = Counter(
	"chaifinder_spot_lookups_total",
	"Spot detail lookups by result",
	["result"],
)

NOTIFICATION_DECISIONS = Counter(
	"chaifinder_notification_decisions_total",
	"Notification admission decisions by outcome",
	["kind", "outcome"],
)

NOTIFICATION_PENDING = Gauge(
	"chaifinder_notification_pending",
	"Events waiting for deferred re-evaluation",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_relationship_op(op: str, result: str) -> None:
	RELATIONSHIP_OPS.labels(op=op, result=result).inc()


def inc_feed_load(requested: str, served: str) -> None:
	FEED_LOADS.labels(requested=requested, served=served).inc()


def inc_feed_failure(reason: str) -> None:
	FEED_FAILURES.labels(reason=reason).inc()


def inc_spot_lookup(result: str) -> None:
	SPOT_LOOKUPS.labels(result=result).inc()


def inc_notification_decision(kind: str, outcome: str) -> None:
	NOTIFICATION_DECISIONS.labels(kind=kind, outcome=outcome).inc()


def set_notification_pending(count: int) -> None:
	NOTIFICATION_PENDING.set(count)

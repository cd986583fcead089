"""Prometheus metrics shared by the API and the chat service."""

from prometheus_client import CollectorRegistry, Counter

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total requests by endpoint", ["path"], registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total errors by endpoint", ["path"], registry=CUSTOM_REGISTRY)
EXCHANGES = Counter("exchanges_total", "Completed message exchanges by mode", ["mode"], registry=CUSTOM_REGISTRY)
PROVIDER_FAILURES = Counter(
    "provider_failures_total", "Generation failures absorbed into an apology", ["provider"], registry=CUSTOM_REGISTRY
)

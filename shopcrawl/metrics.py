"""Prometheus metrics for shopcrawl."""

from prometheus_client import Counter, Histogram, Info

app_info = Info("shopcrawl", "shopcrawl application info")
app_info.info({"version": "0.1.0", "name": "shopcrawl"})

# Fetch metrics
fetch_attempts_total = Counter(
    "shopcrawl_fetch_attempts_total",
    "Total number of HTTP fetch attempts",
    ["source", "outcome"],
)

fetch_duration_seconds = Histogram(
    "shopcrawl_fetch_duration_seconds",
    "Time spent on a single fetch attempt",
    ["source"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Crawl metrics
pages_processed_total = Counter(
    "shopcrawl_pages_processed_total",
    "Listing pages processed",
    ["source", "outcome"],
)

items_upserted_total = Counter(
    "shopcrawl_items_upserted_total",
    "Item records written, by upsert action",
    ["source", "action"],
)

runs_total = Counter(
    "shopcrawl_runs_total",
    "Finished runs by terminal status",
    ["source", "status"],
)

# Proxy metrics
proxy_failures_total = Counter(
    "shopcrawl_proxy_failures_total",
    "Proxies marked failed",
    ["source"],
)

proxy_pool_resets_total = Counter(
    "shopcrawl_proxy_pool_resets_total",
    "Times the failed-proxy set was cleared because nothing was left",
    ["source"],
)


def record_fetch_attempt(source: str, outcome: str, duration: float):
    """Record one fetch attempt (outcome: success, http_error, transport_error)."""
    fetch_attempts_total.labels(source=source, outcome=outcome).inc()
    fetch_duration_seconds.labels(source=source).observe(duration)


def record_page(source: str, outcome: str):
    """Record a processed listing page (outcome: items, empty, failed)."""
    pages_processed_total.labels(source=source, outcome=outcome).inc()


def record_upsert(source: str, action: str):
    """Record an upsert result."""
    items_upserted_total.labels(source=source, action=action).inc()


def record_run(source: str, status: str):
    """Record a run reaching a terminal status."""
    runs_total.labels(source=source, status=status).inc()


def record_proxy_failure(source: str):
    proxy_failures_total.labels(source=source).inc()


def record_proxy_reset(source: str):
    proxy_pool_resets_total.labels(source=source).inc()

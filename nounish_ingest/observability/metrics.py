"""
Prometheus metrics collection for nounish-ingest

Counters and histograms for file discovery, staging loads, enrichment
fan-out and scheduler health.
"""
import os
from contextlib import contextmanager
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# INGESTION METRICS
# =======================

# Source files handled by the discovery loop
files_processed_total = Counter(
    name="ingest_files_processed_total",
    documentation="Total number of source files handled by the discovery loop",
    labelnames=["ingestion_type", "status"],  # status: success, failure, skipped
    registry=REGISTRY,
)

# Rows bulk-loaded into staging
staged_rows_total = Counter(
    name="ingest_staged_rows_total",
    documentation="Total number of rows copied into staging tables",
    labelnames=["ingestion_type"],
    registry=REGISTRY,
)

# Latest committed watermark per type
watermark_timestamp_ms = Gauge(
    name="ingest_watermark_timestamp_ms",
    documentation="Latest successfully processed source file timestamp (epoch ms)",
    labelnames=["ingestion_type"],
    registry=REGISTRY,
)

# Discovery run duration
discovery_duration_seconds = Histogram(
    name="ingest_discovery_duration_seconds",
    documentation="Time spent in one discovery pass in seconds",
    labelnames=["ingestion_type"],
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

# =======================
# WAREHOUSE METRICS
# =======================

# Retries on lock / deadlock conditions
retries_total = Counter(
    name="ingest_store_retries_total",
    documentation="Total number of retry attempts on transient store errors",
    labelnames=["operation", "status"],  # status: retrying, exhausted
    registry=REGISTRY,
)

# =======================
# ENRICHMENT METRICS
# =======================

# Payloads dispatched to the outbound queue
payloads_dispatched_total = Counter(
    name="ingest_payloads_dispatched_total",
    documentation="Total number of payloads posted to the outbound queue",
    labelnames=["stream"],  # stream: jobs, grant_updates, builder_profiles
    registry=REGISTRY,
)

# Records rejected or dropped during enrichment
records_rejected_total = Counter(
    name="ingest_records_rejected_total",
    documentation="Total number of records rejected or dropped during enrichment",
    labelnames=["reason"],
    registry=REGISTRY,
)

# =======================
# SCHEDULER METRICS
# =======================

# Ticks skipped because the previous tick of the same job was still running
job_ticks_skipped_total = Counter(
    name="ingest_job_ticks_skipped_total",
    documentation="Scheduler ticks skipped by the per-job running guard",
    labelnames=["job"],
    registry=REGISTRY,
)

# Ticks that raised
job_failures_total = Counter(
    name="ingest_job_failures_total",
    documentation="Scheduler ticks that ended with an error",
    labelnames=["job"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Serve REGISTRY over HTTP for Prometheus to scrape

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    start_http_server(port or int(os.getenv("METRICS_PORT", "8000")), registry=REGISTRY)


@contextmanager
def track_duration(histogram: Histogram, **labels):
    """
    Observe the wall time of a block, including blocks that raise

    Usage:
        with track_duration(discovery_duration_seconds, ingestion_type="casts"):
            loop.run(...)
    """
    with histogram.labels(**labels).time():
        yield


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)

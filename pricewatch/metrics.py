"""Prometheus metrics for price monitoring."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("pricewatch", "Price watch application info")
app_info.info({"version": "0.1.0", "name": "pricewatch"})

# Evaluator metrics
alert_checks_total = Counter(
    "alert_checks_total",
    "Total number of alert evaluations by outcome",
    ["status"],
)

alert_notifications_total = Counter(
    "alert_notifications_total",
    "Total number of notification decisions",
    ["trigger", "status"],
)

price_source_errors_total = Counter(
    "price_source_errors_total",
    "Total number of failed price lookups",
    ["reason"],
)

evaluator_cycle_duration_seconds = Histogram(
    "evaluator_cycle_duration_seconds",
    "Time spent running one evaluator cycle",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

# History metrics
price_observations_total = Counter(
    "price_observations_total",
    "Total number of price observations offered to the history store",
    ["result"],
)

compaction_units_total = Counter(
    "compaction_units_total",
    "Total number of product-day compaction units by outcome",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_alert_check(status: str):
    """Record one alert evaluation outcome (checked, unchanged, unavailable, error)."""
    alert_checks_total.labels(status=status).inc()


def record_observation(stored: bool):
    """Record whether an offered observation was stored or de-noised away."""
    price_observations_total.labels(result="stored" if stored else "discarded").inc()


def record_notification(trigger: str, status: str):
    """Record a notification decision (sent, suppressed, failed)."""
    alert_notifications_total.labels(trigger=trigger, status=status).inc()


def record_price_source_error(reason: str):
    """Record a failed price lookup."""
    price_source_errors_total.labels(reason=reason).inc()


def record_compaction_unit(status: str):
    """Record a compaction unit outcome (compacted, conflict, error)."""
    compaction_units_total.labels(status=status).inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())

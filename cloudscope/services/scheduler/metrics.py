"""
Shared Prometheus Metrics for Scheduler Service
"""
from prometheus_client import Counter, Histogram

# Total scheduled scan runs
SCHEDULER_JOB_RUNS = Counter(
    "cloudscope_scheduler_job_runs_total",
    "Total number of scheduled scan runs",
    ["job_name", "status"]
)

# Duration of scheduled scans
SCHEDULER_JOB_DURATION = Histogram(
    "cloudscope_scheduler_job_duration_seconds",
    "Duration of scheduled scans in seconds",
    ["job_name"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600]
)

# Ticks dropped because the previous run of the same job was still active
SCHEDULER_JOB_SKIPPED = Counter(
    "cloudscope_scheduler_job_skipped_total",
    "Scheduled scan ticks skipped while a previous run was in flight",
    ["job_name"]
)

# Providers that failed inside a scheduled scan
SCHEDULER_PROVIDER_FAILURES = Counter(
    "cloudscope_scheduler_provider_failures_total",
    "Provider scan failures during scheduled scans",
    ["job_name", "provider"]
)

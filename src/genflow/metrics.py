from prometheus_client import Counter, Histogram

generation_attempts_total = Counter(
    "genflow_generation_attempts_total",
    "Outbound generation API attempts by outcome",
    ["outcome"],
)

generation_retry_delay_seconds = Histogram(
    "genflow_generation_retry_delay_seconds",
    "Backoff delay applied before retrying a generation call",
    buckets=[1, 2, 4, 8, 16, 30, 60],
)

rate_limit_decisions_total = Counter(
    "genflow_rate_limit_decisions_total",
    "Rate limiter admission decisions",
    ["endpoint", "decision"],
)

media_uploads_total = Counter(
    "genflow_media_uploads_total",
    "Generated media uploads to blob storage",
    ["outcome"],
)

generation_jobs_finished_total = Counter(
    "genflow_generation_jobs_finished_total",
    "Single generation requests reaching a terminal status",
    ["status"],
)

batch_items_total = Counter(
    "genflow_batch_items_total",
    "Batch items processed by result",
    ["result"],
)

batch_jobs_finished_total = Counter(
    "genflow_batch_jobs_finished_total",
    "Batch jobs reaching a terminal status",
    ["status"],
)

from __future__ import annotations

from prometheus_client import Counter, Gauge

jobs_created = Counter("vto_jobs_created_total", "Total try-on jobs submitted")
jobs_completed = Counter("vto_jobs_completed_total", "Total try-on jobs completed")
jobs_failed = Counter("vto_jobs_failed_total", "Total try-on jobs failed")
jobs_in_progress = Gauge("vto_jobs_in_progress", "Jobs currently processing")
normalization_anomalies = Counter(
    "vto_normalization_anomalies_total", "Backend output items skipped during normalization"
)
fetch_degradations = Counter(
    "vto_fetch_degradations_total", "Result downloads replaced by a placeholder image"
)
mock_results = Counter("vto_mock_results_total", "Result slots filled with placeholder content")

# shared/metrics.py

from prometheus_client import Counter, Gauge

JOBS_CREATED = Counter('telegram_scheduler_jobs_created_total', 'Total scheduled jobs created')
JOBS_REMOVED = Counter('telegram_scheduler_jobs_removed_total', 'Total scheduled jobs removed')
DELIVERIES = Counter('telegram_scheduler_deliveries_total', 'Scheduled deliveries by outcome', ['status'])
ACTIVE_JOBS = Gauge('telegram_scheduler_active_jobs', 'Number of registered scheduled jobs')

"""
Prometheus Metrics for the CMS export client
Exposes metrics for CMS API calls, export job polling, downloads and transcoding.
"""
from prometheus_client import Counter, Histogram, start_http_server


# =============================================================================
# CMS API Request Metrics
# =============================================================================
cms_requests_total = Counter(
    'cmsv6_export_cms_requests_total',
    'Total CMS API requests',
    ['action', 'outcome']  # outcome: ok, transport_error, protocol_error
)

cms_request_duration_seconds = Histogram(
    'cmsv6_export_cms_request_duration_seconds',
    'CMS API request duration in seconds',
    ['action'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

cms_logins_total = Counter(
    'cmsv6_export_cms_logins_total',
    'Total CMS login attempts',
    ['outcome']
)


# =============================================================================
# Export Metrics
# =============================================================================
export_polls_total = Counter(
    'cmsv6_export_export_polls_total',
    'Export task status responses',
    ['status']  # pending, ready, failed, unknown
)

downloaded_bytes_total = Counter(
    'cmsv6_export_downloaded_bytes_total',
    'Bytes downloaded from the CMS download server'
)

transcodes_total = Counter(
    'cmsv6_export_transcodes_total',
    'Transcoder runs',
    ['outcome']  # ok, failed
)

exported_files_total = Counter(
    'cmsv6_export_exported_files_total',
    'Video segments downloaded by the exporter'
)


# =============================================================================
# Helper Functions
# =============================================================================
def start_metrics_server(port: int):
    """Expose metrics over HTTP for Prometheus scraping"""
    start_http_server(port)


def record_request(action: str, outcome: str, duration: float):
    """Record a CMS API request"""
    cms_requests_total.labels(action=action, outcome=outcome).inc()
    cms_request_duration_seconds.labels(action=action).observe(duration)


def record_login(outcome: str):
    cms_logins_total.labels(outcome=outcome).inc()


def record_export_poll(status: str):
    export_polls_total.labels(status=status).inc()


def record_download(num_bytes: int):
    downloaded_bytes_total.inc(num_bytes)


def record_transcode(outcome: str):
    transcodes_total.labels(outcome=outcome).inc()


def record_exported_file():
    exported_files_total.inc()

"""Shared OTel metrics instruments for the service."""

from opentelemetry import metrics

METER_NAME = "blog_api"

meter = metrics.get_meter(METER_NAME)

posts_written_total = meter.create_counter(
    name="posts_written_total",
    description="Blog post writes, by operation (create, update, delete)",
    unit="1",
)

store_errors_total = meter.create_counter(
    name="store_errors_total",
    description="Requests that failed because the post store was unreachable",
    unit="1",
)

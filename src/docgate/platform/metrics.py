"""
Prometheus metrics for the gateway.
"""

from prometheus_client import Counter

DOCUMENTS_WRITTEN = Counter(
    "docgate_documents_written_total",
    "Documents written through the gateway",
    ["collection", "outcome"],
)

BULK_REQUESTS = Counter(
    "docgate_bulk_requests_total",
    "Bulk ingestion requests",
    ["collection", "outcome"],
)

STREAMED_DOCUMENTS = Counter(
    "docgate_streamed_documents_total",
    "Documents handed to streaming consumers",
    ["collection", "operation"],
)

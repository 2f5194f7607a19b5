from .ingestion import BulkResult, bulk_write, decode_documents
from .streaming import StopSignal, stream_results

__all__ = ["BulkResult", "bulk_write", "decode_documents", "StopSignal", "stream_results"]

"""
docgate - Document-store gateway

A single request surface in front of interchangeable document backends:
- api: FastAPI REST endpoints
- storage: Collections, identifier codecs and backend engines (Elasticsearch, MongoDB)
- pipelines: Bulk ingestion and streaming query pipelines
- platform: Cross-cutting concerns (config, logging, metrics)
"""

__version__ = "0.1.0"

"""HTTP API for ingestion, chat, export and analytics."""

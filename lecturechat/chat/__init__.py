"""Retrieval-augmented chat over ingested lecture videos."""

"""Video ingestion pipeline: transcript extraction, chunking, embedding and indexing."""

"""Knowledge Ingest: document extraction, chunking, embedding and vector indexing."""

__version__ = "0.1.0"

"""docqa: chunking, retrieval and context assembly for document question answering."""

__version__ = "0.1.0"

"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCQA_DATA_DIR", str(BASE_DIR / "data")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
# Leave unset to detect the dimension by embedding a probe string
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION") or 0) or None

# Chunking parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
CHUNK_SEPARATOR = os.getenv("CHUNK_SEPARATOR") or None

# Retrieval & context
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "3"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS") or 0) or None

# Ingestion fan-out
EMBEDDING_CONCURRENCY = int(os.getenv("EMBEDDING_CONCURRENCY", "10"))

# Timeouts (seconds)
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30.0"))
INDEX_TIMEOUT = float(os.getenv("INDEX_TIMEOUT", "10.0"))
CHAT_TIMEOUT = float(os.getenv("CHAT_TIMEOUT", "60.0"))

# Storage
DB_PATH = DATA_DIR / "docqa.sqlite"
VECTOR_INDEX_PATH = DATA_DIR / "vectors.index"
METADATA_PATH = DATA_DIR / "metadata.json"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

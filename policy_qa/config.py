# policy_qa/config.py
"""
Configuration for the Policy Q&A engine.

This file centralizes all tunable parameters for retrieval, expert overrides
and answer generation. Values can be overridden through environment variables
without code modifications.
"""

import os


# ========== EMBEDDING CONFIGURATION ==========

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1536"))

EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "15"))


# ========== VECTOR INDEX CONFIGURATION ==========

# ":memory:" runs Qdrant in-process (single instance, nothing persisted)
QDRANT_URL = os.getenv("QDRANT_URL", ":memory:")
QDRANT_API_KEY = os.getenv("QDRANT_API_KEY")

QDRANT_CHUNK_COLLECTION = os.getenv("QDRANT_CHUNK_COLLECTION", "policy_chunks")
QDRANT_OVERRIDE_COLLECTION = os.getenv(
    "QDRANT_OVERRIDE_COLLECTION", "expert_overrides"
)
QDRANT_HINT_COLLECTION = os.getenv("QDRANT_HINT_COLLECTION", "underwriter_hints")

SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "10"))

# Page size when walking override neighbours; pages continue until one
# qualifies or the similarity floor is passed
OVERRIDE_CANDIDATE_LIMIT = 10


# ========== SEARCH SETTINGS (DEFAULTS AND BOUNDS) ==========

DEFAULT_SIMILARITY_THRESHOLD = 0.3
DEFAULT_MAX_RESULTS = 15
DEFAULT_CONTEXT_CHUNKS = 5

MAX_RESULTS_BOUNDS = (1, 50)
CONTEXT_CHUNKS_BOUNDS = (1, 10)

# Overrides need a much closer match than chunks:
# a wrong expert answer shown as authoritative is worse than a missed chunk
DEFAULT_OVERRIDE_THRESHOLD = 0.85


# ========== UNDERWRITER HINTS ==========

HINT_MATCH_COUNT = 10

# Hits must score strictly above this
HINT_MIN_SIMILARITY = 0.2

HINT_RECOMMENDATION_LIMIT = 5
HINT_PREVIEW_CHARACTERS = 150


# ========== ANSWER CONFIGURATION ==========

HIGH_CONFIDENCE_SIMILARITY = 0.8
MEDIUM_CONFIDENCE_SIMILARITY = 0.6

SOURCE_PREVIEW_CHARACTERS = 200


# ========== LLM CONFIGURATION ==========

LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")

LLM_TEMPERATURE = 0.1  # Low temperature for factual answers
LLM_MAX_TOKENS = 800

GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))


# ========== DOCUMENT PROCESSING ==========

CHUNK_MAX_CHARACTERS = 1000
MAX_DOCUMENT_CHARACTERS = 2_000_000
MAX_CHUNKS_PER_DOCUMENT = 2000


# ========== STORAGE ==========

STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")

# No user model exists yet; every write is attributed to this identity
PLACEHOLDER_USER_ID = "anonymous"


"""
TRADE-OFF DECISIONS:

1. DEFAULT_SIMILARITY_THRESHOLD = 0.3:
   - Chunk matches are only context for the model, which is told to refuse
     when the context does not answer the question
   - A low bar keeps recall high for paraphrased policy wording

2. DEFAULT_OVERRIDE_THRESHOLD = 0.85:
   - An override replaces the generated answer outright
   - The per-override threshold is a floor: a looser caller threshold
     never lowers it

3. QDRANT_URL = ":memory:" by default:
   - Trade-off: zero setup for local runs and tests
   - Limitation: index lost on restart; set QDRANT_URL for real deployments
"""

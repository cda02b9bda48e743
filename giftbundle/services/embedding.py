"""
Embedding Service — Vertex AI text-embedding-004

Generates 768-dimension text embeddings for bundle semantic search.
Uses Google Cloud Vertex AI's text-embedding-004 model.

Graceful degradation: If Vertex AI is not configured or the API call fails,
returns None. The bundle is still saved, with a NULL embedding.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# --- Constants ---
EMBEDDING_MODEL_NAME = "text-embedding-004"
EMBEDDING_DIMENSION = 768
VERTEX_AI_LOCATION = "us-central1"

# --- Module-level lazy initialization ---
_model = None
_initialized = False


def _get_model(project: str):
    """
    Lazy-initialize the Vertex AI TextEmbeddingModel.

    Only attempts initialization once; later calls return the cached
    result (model or None).
    """
    global _model, _initialized

    if _initialized:
        return _model

    _initialized = True

    if not project:
        logger.warning(
            "GOOGLE_CLOUD_PROJECT not set — embedding generation disabled. "
            "Bundles will be stored without embeddings."
        )
        return None

    try:
        import vertexai
        from vertexai.language_models import TextEmbeddingModel

        vertexai.init(project=project, location=VERTEX_AI_LOCATION)
        _model = TextEmbeddingModel.from_pretrained(EMBEDDING_MODEL_NAME)
        logger.info(
            "Vertex AI %s initialized (project=%s, location=%s)",
            EMBEDDING_MODEL_NAME, project, VERTEX_AI_LOCATION,
        )
        return _model

    except Exception as exc:
        logger.warning(
            "Failed to initialize Vertex AI embedding model: %s. "
            "Bundles will be stored without embeddings.", exc,
        )
        return None


def _reset_model():
    """Reset the cached model state. Used by tests to force re-initialization."""
    global _model, _initialized
    _model = None
    _initialized = False


async def generate_embedding(text: str, project: str) -> Optional[list[float]]:
    """
    Generate a 768-dimension embedding for the given text.

    The synchronous Vertex AI SDK call runs in a worker thread via
    asyncio.to_thread().

    Returns:
        768 floats, or None if embedding generation fails for any reason.
    """
    model = _get_model(project)
    if model is None:
        return None

    try:
        embeddings = await asyncio.to_thread(model.get_embeddings, [text])

        if not embeddings:
            logger.warning("Vertex AI returned empty embeddings list")
            return None

        vector = embeddings[0].values

        if len(vector) != EMBEDDING_DIMENSION:
            logger.warning(
                "Expected %d-dimension vector, got %d", EMBEDDING_DIMENSION, len(vector),
            )
            return None

        return vector

    except Exception as exc:
        logger.warning("Embedding generation failed for bundle: %s", exc)
        return None


def format_embedding_for_pgvector(embedding: list[float]) -> str:
    """
    Format a list of floats into a pgvector-compatible string.

    PostgREST expects vector values as a string: "[0.1,0.2,...,0.768]"
    """
    return "[" + ",".join(str(v) for v in embedding) + "]"

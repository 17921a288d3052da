"""Embedding-backed recall of past exchanges."""

from __future__ import annotations

import math
from typing import Sequence

from clawpilot.db import Database
from clawpilot.llm.base import EmbeddingProvider


class SemanticMemory:
    """Stores exchanges with their embeddings and recalls by cosine similarity.

    Errors propagate; callers decide whether memory is best-effort.
    """

    def __init__(self, db: Database, embeddings: EmbeddingProvider, min_score: float = 0.7) -> None:
        self._db = db
        self._embeddings = embeddings
        self._min_score = min_score

    async def save(self, conversation_key: str, user_text: str, assistant_text: str) -> None:
        text = f"User: {user_text}\nAssistant: {assistant_text}"
        embedding = await self._embeddings.embed(text)
        self._db.add_memory_record(conversation_key, text, embedding)

    async def recall(self, conversation_key: str, query: str, limit: int = 5) -> list[str]:
        records = self._db.list_memory_records(conversation_key)
        if not records:
            return []
        query_embedding = await self._embeddings.embed(query)
        scored = [
            (cosine_similarity(query_embedding, embedding), text)
            for text, embedding in records
        ]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [text for score, text in scored[:limit] if score >= self._min_score]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0

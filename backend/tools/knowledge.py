"""
Knowledge Retrieval Engine - hybrid keyword + semantic search over the MetaDJ corpus.

Corpus files live in KNOWLEDGE_DIR, one JSON file per category:

    {"_meta": {"lastUpdated": "YYYY-MM-DD", "version", "source"},
     "category", "title", "description",
     "entries": [{"id", "title", "content", "keywords", "synonyms"}]}

Scoring per entry (query lowercased, capped at 200 characters):
    +10  title contains the query
    +5   per keyword contained in the query
    +2   per keyword / query-word partial overlap (words longer than 2)
    +4   per synonym contained in the query
    +3   content contains the query
    +1   per query word found in the content
    total = keyword score + cosine(query, entry) * 8

Embeddings for the whole corpus are computed once behind a single-flight
task and persisted to a disk cache keyed by (content hash, model). Any
content change invalidates the whole cache file.
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field

from errors import KnowledgeEmbeddingError
from tools.embeddings import EMBEDDING_MODEL, create_embedder

logger = logging.getLogger(__name__)

KNOWLEDGE_CATEGORIES = ["metadj", "zuberant", "ecosystem", "philosophy", "identity", "workflows"]
KNOWLEDGE_STALENESS_DAYS = 90
MAX_KNOWLEDGE_RESULTS = 5
MAX_QUERY_LENGTH = 200
MAX_EMBED_TEXT_LENGTH = 2000
SEMANTIC_WEIGHT = 8
QUERY_EMBED_TIMEOUT = 10.0

NOT_FOUND_SUGGESTION = (
    "No specific matches found. Try asking about: who MetaDJ is, what Zuberant does, "
    "the broader ecosystem vision, music collections, the Synthetic Orchaistra method, "
    "Digital Jockey, AI philosophy, purest vibes, or creative principles."
)


class ZuberantContextInput(BaseModel):
    query: str = Field(
        ..., min_length=1,
        description="What the user wants to know about MetaDJ, Zuberant, or the broader ecosystem vision",
    )
    topic: Optional[Literal["metadj", "zuberant", "ecosystem", "philosophy", "identity", "workflows", "all"]] = Field(
        None, description="Narrow search to specific topic area"
    )


@dataclass
class KnowledgeEntry:
    id: str
    title: str
    content: str
    keywords: List[str] = field(default_factory=list)
    synonyms: List[str] = field(default_factory=list)


@dataclass
class KnowledgeCategory:
    category: str
    title: str
    description: str
    entries: List[KnowledgeEntry]
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeCategory":
        return cls(
            category=data["category"],
            title=data.get("title", data["category"]),
            description=data.get("description", ""),
            entries=[
                KnowledgeEntry(
                    id=e["id"],
                    title=e["title"],
                    content=e["content"],
                    keywords=list(e.get("keywords", [])),
                    synonyms=list(e.get("synonyms", [])),
                )
                for e in data.get("entries", [])
            ],
            meta=data.get("_meta") or {},
        )


def load_knowledge_base(directory: Path) -> List[KnowledgeCategory]:
    """Load every known category file present in the directory, in fixed order."""
    categories = []
    for name in KNOWLEDGE_CATEGORIES:
        path = Path(directory) / f"{name}.json"
        if not path.exists():
            logger.warning(f"Knowledge file missing: {path}")
            continue
        categories.append(KnowledgeCategory.from_dict(json.loads(path.read_text(encoding="utf-8"))))
    return categories


def check_knowledge_staleness(
    categories: List[KnowledgeCategory],
    today: Optional[date] = None,
) -> Tuple[List[str], List[str]]:
    """Log stale or undated corpus files. Returns (stale, missing_meta)."""
    today = today or date.today()
    stale: List[str] = []
    missing: List[str] = []

    for category in categories:
        last_updated = category.meta.get("lastUpdated")
        if not last_updated:
            missing.append(category.category)
            continue
        try:
            updated = datetime.strptime(last_updated, "%Y-%m-%d").date()
        except ValueError:
            missing.append(category.category)
            continue
        age_days = (today - updated).days
        if age_days > KNOWLEDGE_STALENESS_DAYS:
            stale.append(f"{category.category} ({age_days} days old)")

    if missing:
        logger.warning(f"Knowledge files missing _meta.lastUpdated: {', '.join(missing)}")
    if stale:
        logger.warning(
            f"Stale knowledge detected (>{KNOWLEDGE_STALENESS_DAYS} days old): {', '.join(stale)}. "
            f"Sync from Brand Corpus recommended"
        )
    return stale, missing


def cosine_similarity(a: List[float], b: List[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def keyword_score(entry: KnowledgeEntry, query: str) -> int:
    """Deterministic keyword score for an already-lowercased query."""
    score = 0
    title = entry.title.lower()
    content = entry.content.lower()
    query_words = [w for w in query.split() if len(w) > 2]

    if query in title:
        score += 10

    for keyword in entry.keywords:
        normalized = keyword.lower()
        if normalized in query:
            score += 5
        for word in query_words:
            if word in normalized or normalized in word:
                score += 2

    for synonym in entry.synonyms:
        if synonym.lower() in query:
            score += 4

    if query in content:
        score += 3

    for word in query_words:
        if word in content:
            score += 1

    return score


@dataclass
class EmbeddedEntry:
    entry: KnowledgeEntry
    category: str
    embedding: List[float]


class KnowledgeEngine:
    """Knowledge search with a lazily built, single-flight embedding table."""

    def __init__(
        self,
        categories: List[KnowledgeCategory],
        embedder: Optional[Any] = None,
        cache_path: Optional[Path] = None,
    ):
        self.categories = categories
        self.embedder = embedder
        self.cache_path = Path(cache_path) if cache_path else None
        self._flat = [(entry, kb.category) for kb in categories for entry in kb.entries]
        self._embeddings: Optional[List[EmbeddedEntry]] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def model(self) -> str:
        return getattr(self.embedder, "model", EMBEDDING_MODEL)

    @property
    def entry_count(self) -> int:
        return len(self._flat)

    def compute_hash(self) -> str:
        content = "|".join(f"{entry.id}:{entry.title}:{entry.content}" for entry, _ in self._flat)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]

    # =========================================================================
    # EMBEDDING CACHE
    # =========================================================================

    def _read_disk_cache(self) -> Optional[Dict[str, Any]]:
        if not self.cache_path or not self.cache_path.exists():
            return None
        try:
            return json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable embeddings cache {self.cache_path}: {e}")
            return None

    def _write_disk_cache(self, digest: str, embedded: List[EmbeddedEntry]) -> None:
        if not self.cache_path:
            return
        payload = {
            "hash": digest,
            "model": self.model,
            "embeddings": [{"id": item.entry.id, "embedding": item.embedding} for item in embedded],
        }
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(payload), encoding="utf-8")
            logger.info(f"Knowledge embeddings cached to disk: {len(embedded)} entries -> {self.cache_path}")
        except OSError as e:
            logger.warning(f"Failed to cache embeddings to disk: {e}")

    async def _compute_embeddings(self) -> List[EmbeddedEntry]:
        digest = self.compute_hash()
        cached = self._read_disk_cache()
        if cached and cached.get("hash") == digest and cached.get("model") == self.model:
            vectors = {item["id"]: item["embedding"] for item in cached.get("embeddings", [])}
            embedded = [EmbeddedEntry(entry, category, vectors.get(entry.id, [])) for entry, category in self._flat]
            logger.info(f"Knowledge embeddings loaded from disk cache: {len(embedded)} entries (hash {digest})")
            return embedded

        if self.embedder is None:
            return []

        logger.info(
            f"Generating knowledge embeddings (cache {'stale' if cached else 'missing'}, {len(self._flat)} entries)"
        )
        texts = [f"{entry.title}\n\n{entry.content}"[:MAX_EMBED_TEXT_LENGTH] for entry, _ in self._flat]
        try:
            vectors = await self.embedder.embed_many(texts)
        except Exception as e:
            error = KnowledgeEmbeddingError("Semantic knowledge embeddings failed", details=str(e), model=self.model)
            logger.warning(f"{error}; falling back to keyword search")
            return []

        embedded = [
            EmbeddedEntry(entry, category, vectors[i] if i < len(vectors) else [])
            for i, (entry, category) in enumerate(self._flat)
        ]
        self._write_disk_cache(digest, embedded)
        return embedded

    async def load_embeddings(self) -> List[EmbeddedEntry]:
        """Embedding table for the corpus. Concurrent cold callers share one computation."""
        if self._embeddings is not None:
            return self._embeddings

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._compute_embeddings())
        pending = self._pending
        try:
            result = await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending is pending:
                self._pending = None

        self._embeddings = result
        return result

    async def warmup(self) -> None:
        """Pre-compute embeddings at startup. Never raises."""
        start = time.time()
        try:
            embedded = await self.load_embeddings()
        except Exception as e:
            logger.warning(f"Failed to pre-warm knowledge embeddings, will load on first query: {e}")
            return
        duration_ms = int((time.time() - start) * 1000)
        if embedded:
            logger.info(f"Knowledge embeddings pre-warmed: {len(embedded)} entries in {duration_ms}ms")
        else:
            logger.info(f"Knowledge embeddings warmup skipped (no OpenAI key or empty) in {duration_ms}ms")

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def _semantic_scores(self, query: str, allowed: set) -> Dict[str, float]:
        embedded = await self.load_embeddings()
        if not embedded or self.embedder is None:
            return {}
        try:
            query_vector = await asyncio.wait_for(self.embedder.embed(query), timeout=QUERY_EMBED_TIMEOUT)
        except Exception as e:
            logger.warning(f"Query embedding failed, using keyword scores only: {e}")
            return {}

        scores = {}
        for item in embedded:
            if item.category not in allowed or not item.embedding:
                continue
            scores[item.entry.id] = cosine_similarity(query_vector, item.embedding)
        return scores

    def available_topics(self) -> List[Dict[str, str]]:
        return [{"topic": kb.category, "title": kb.title, "description": kb.description} for kb in self.categories]

    async def search(self, query: str, topic: Optional[str] = None) -> Dict[str, Any]:
        q = query.lower()[:MAX_QUERY_LENGTH]
        topic = topic or "all"
        categories = self.categories if topic == "all" else [kb for kb in self.categories if kb.category == topic]
        allowed = {kb.category for kb in categories}

        semantic = await self._semantic_scores(q, allowed)

        scored = []
        for kb in categories:
            for entry in kb.entries:
                total = keyword_score(entry, q) + semantic.get(entry.id, 0.0) * SEMANTIC_WEIGHT
                if total > 0:
                    scored.append((total, kb.category, entry))

        scored.sort(key=lambda item: item[0], reverse=True)
        top = [
            {"category": category, "title": entry.title, "content": entry.content}
            for _, category, entry in scored[:MAX_KNOWLEDGE_RESULTS]
        ]

        if not top:
            return {"found": False, "suggestion": NOT_FOUND_SUGGESTION, "availableTopics": self.available_topics()}
        return {"found": True, "results": top, "totalMatches": len(scored)}


_engine: Optional[KnowledgeEngine] = None


def init_knowledge_engine(config=None, embedder=None) -> KnowledgeEngine:
    global _engine
    if config is None:
        from config import runtime_config as config

    categories = load_knowledge_base(Path(config.knowledge_dir))
    check_knowledge_staleness(categories)
    if embedder is None:
        embedder = create_embedder(config.openai_api_key)
    _engine = KnowledgeEngine(categories, embedder=embedder, cache_path=Path(config.embeddings_cache_path))
    logger.info(f"Knowledge engine ready: {len(categories)} categories, {_engine.entry_count} entries")
    return _engine


def get_knowledge_engine() -> KnowledgeEngine:
    if _engine is None:
        return init_knowledge_engine()
    return _engine


def reset_knowledge_engine(engine: Optional[KnowledgeEngine] = None) -> None:
    global _engine
    _engine = engine


async def get_zuberant_context(query: str, topic: Optional[str] = None) -> Dict[str, Any]:
    """Tool executor for getZuberantContext."""
    return await get_knowledge_engine().search(query, topic)


async def warmup_knowledge_embeddings() -> None:
    await get_knowledge_engine().warmup()

import logging
import uuid
from typing import Dict, List, Optional, Sequence, get_args

from policy_qa.concurrency import call_with_timeout
from policy_qa.config import (
    EMBEDDING_TIMEOUT_SECONDS,
    HINT_MATCH_COUNT,
    HINT_MIN_SIMILARITY,
    HINT_PREVIEW_CHARACTERS,
    HINT_RECOMMENDATION_LIMIT,
    PLACEHOLDER_USER_ID,
)
from policy_qa.errors import IndexUnavailable, NotFoundError, ValidationError
from policy_qa.hints.index import HintIndex
from policy_qa.hints.store import HintRepository
from policy_qa.memory.documents import UNKNOWN_DOCUMENT_NAME, DocumentRegistry
from policy_qa.memory.embedder import Embedder
from policy_qa.models import (
    HintCategory,
    HintSearchResponse,
    KnowledgeMatch,
    PolicyRecommendation,
    UnderwriterHint,
)


logger = logging.getLogger(__name__)

HINT_CATEGORIES = get_args(HintCategory)

NO_KNOWLEDGE_MESSAGE = (
    "No expert knowledge found for your query. Try different search terms "
    "or add underwriter hints to your policies."
)
NO_POLICY_MESSAGE = (
    "No relevant policies found. Try different search terms or upload more policies."
)

# file-name keyword -> policy type, first match wins
_POLICY_TYPES = (
    (("auto", "car", "vehicle"), "Auto Policy"),
    (("home", "property"), "Property Policy"),
    (("cgl", "general", "liability"), "General Liability"),
    (("workers", "comp"), "Workers Comp"),
)


def policy_type_for(file_name: str) -> str:

    name = file_name.lower()

    for keywords, policy_type in _POLICY_TYPES:
        if any(keyword in name for keyword in keywords):
            return policy_type

    return "Insurance Policy"


def clean_tags(tags: Sequence[str]) -> List[str]:
    """Trimmed, non-empty, first occurrence kept."""

    cleaned = []

    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)

    return cleaned


def embedding_text(hint: UnderwriterHint) -> str:
    return " ".join([hint.title, hint.content, *hint.tags])


class HintManager:
    """
    Underwriter knowledge base: hints attached to a policy document, or
    global hints for a policy type, searchable by meaning.
    """

    def __init__(
        self,
        repository: HintRepository,
        index: HintIndex,
        embedder: Embedder,
        documents: DocumentRegistry,
    ):

        self._repository = repository
        self._index = index
        self._embedder = embedder
        self._documents = documents

    def _embed(self, text: str) -> List[float]:

        return call_with_timeout(
            "embedding",
            EMBEDDING_TIMEOUT_SECONDS,
            self._embedder.embed_one,
            text,
        )

    def create(
        self,
        title: str,
        content: str,
        category: str,
        tags: Sequence[str] = (),
        document_id: Optional[str] = None,
        policy_type: Optional[str] = None,
        is_global: bool = False,
        underwriter_id: Optional[str] = None,
    ) -> UnderwriterHint:
        """
        Store and index a hint.

        A global hint belongs to a policy type; any other hint belongs to one
        existing document.
        """

        for field, value in (("title", title), ("content", content), ("category", category)):
            if not value or not value.strip():
                raise ValidationError(f"{field} is required", field=field)

        if category not in HINT_CATEGORIES:
            raise ValidationError(
                f"Unknown hint category: {category}",
                field="category",
            )

        if is_global:
            if not policy_type or not policy_type.strip():
                raise ValidationError(
                    "A global hint needs a policy type",
                    field="policy_type",
                )

        else:
            if not document_id:
                raise ValidationError(
                    "A document hint needs a document id",
                    field="document_id",
                )
            self._documents.get(document_id)

        hint = UnderwriterHint(
            id=str(uuid.uuid4()),
            title=title.strip(),
            content=content.strip(),
            category=category,
            tags=clean_tags(tags),
            document_id=None if is_global else document_id,
            policy_type=policy_type.strip() if policy_type else None,
            is_global=is_global,
            underwriter_id=underwriter_id or PLACEHOLDER_USER_ID,
        )

        vector = self._embed(embedding_text(hint))

        self._repository.insert(hint, vector)

        try:
            self._index.upsert(hint, vector)

        except IndexUnavailable:
            self._repository.remove(hint.id)
            raise

        logger.info(
            "Underwriter hint created",
            extra={
                "hint_id": hint.id,
                "category": hint.category,
                "is_global": hint.is_global,
                "document_id": hint.document_id,
            },
        )

        return hint

    def list(self, document_id: Optional[str] = None) -> List[UnderwriterHint]:
        return self._repository.list(document_id=document_id)

    def sync_index(self) -> int:
        """Re-upsert stored hints from their stored embeddings."""

        embeddings = self._repository.embeddings()
        synced = 0

        for hint in self._repository.list():

            vector = embeddings.get(hint.id)

            if vector is None:
                continue

            self._index.upsert(hint, vector)
            synced += 1

        logger.info("Hint index synced", extra={"hints": synced})

        return synced

    def search(self, query: str, document_id: Optional[str] = None) -> HintSearchResponse:
        """
        Recommend policy documents by their hints.

        Each document is ranked by its best matching hint; global hints are
        reported separately since they name a policy type, not a document.
        """

        if not query or not query.strip():
            raise ValidationError("Search query is required", field="query")

        query = query.strip()

        hits = self._index.query(
            self._embed(query),
            similarity_floor=HINT_MIN_SIMILARITY,
            limit=HINT_MATCH_COUNT,
            document_id=document_id,
        )

        if not hits:
            return HintSearchResponse(
                query=query,
                recommendations=[],
                total_matches=0,
                message=NO_KNOWLEDGE_MESSAGE,
            )

        best: Dict[str, PolicyRecommendation] = {}
        global_knowledge: List[KnowledgeMatch] = []

        for hint_id, similarity in hits:

            hint = self._repository.find(hint_id)

            if hint is None or similarity <= HINT_MIN_SIMILARITY:
                continue

            if hint.is_global:
                global_knowledge.append(
                    KnowledgeMatch(
                        hint_id=hint.id,
                        title=hint.title,
                        category=hint.category,
                        policy_type=hint.policy_type,
                        similarity=similarity,
                    )
                )
                continue

            existing = best.get(hint.document_id)

            if existing is None or similarity > existing.relevance_score:
                best[hint.document_id] = self._recommend(hint, similarity)

        recommendations = sorted(
            best.values(), key=lambda r: r.relevance_score, reverse=True
        )[:HINT_RECOMMENDATION_LIMIT]

        logger.info(
            "Hint search completed",
            extra={
                "hits": len(hits),
                "recommendations": len(recommendations),
                "global_matches": len(global_knowledge),
            },
        )

        return HintSearchResponse(
            query=query,
            recommendations=recommendations,
            global_knowledge=global_knowledge,
            total_matches=len(recommendations),
            message=None if recommendations else NO_POLICY_MESSAGE,
        )

    def _recommend(self, hint: UnderwriterHint, similarity: float) -> PolicyRecommendation:

        try:
            document = self._documents.get(hint.document_id)
            file_name, file_type = document.file_name, document.file_type

        except NotFoundError:
            # the document was deleted after the hint was written
            file_name, file_type = UNKNOWN_DOCUMENT_NAME, "unknown"

        content = hint.content
        if len(content) > HINT_PREVIEW_CHARACTERS:
            content = content[:HINT_PREVIEW_CHARACTERS] + "..."

        return PolicyRecommendation(
            document_id=hint.document_id,
            file_name=file_name,
            file_type=file_type,
            policy_type=policy_type_for(file_name),
            relevance_score=similarity,
            match_reason=f"Expert insight: {hint.title} ({hint.category})",
            matched_content=content,
            hint_title=hint.title,
            hint_category=hint.category,
        )

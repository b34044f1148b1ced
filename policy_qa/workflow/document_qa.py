import logging
import time
from enum import Enum
from typing import List, Optional, Union

from policy_qa.concurrency import call_with_timeout, submit, wait_bounded
from policy_qa.config import (
    EMBEDDING_TIMEOUT_SECONDS,
    GENERATION_TIMEOUT_SECONDS,
    HIGH_CONFIDENCE_SIMILARITY,
    MEDIUM_CONFIDENCE_SIMILARITY,
    SEARCH_TIMEOUT_SECONDS,
    SOURCE_PREVIEW_CHARACTERS,
)
from policy_qa.errors import DownstreamTimeout, DownstreamUnavailable, ValidationError
from policy_qa.llm.client import LLMClient
from policy_qa.memory.documents import DocumentRegistry
from policy_qa.memory.embedder import Embedder
from policy_qa.memory.retriever import search_chunks
from policy_qa.memory.store import ChunkStore
from policy_qa.models import (
    AIAnswer,
    ExpertAnswer,
    ExpertWithContextAnswer,
    NoAnswer,
    OverrideMatch,
    SearchSettings,
    Source,
)
from policy_qa.overrides.matcher import (
    OverrideLookup,
    OverrideMatcher,
    degrade_override_failure,
)
from policy_qa.prompts.system_prompts import LOW_RELEVANCE_ANSWER, NO_CONTENT_ANSWER
from policy_qa.workflow.context import (
    AssembledContext,
    NoRelevantContext,
    assemble_context,
    section_label,
)


logger = logging.getLogger(__name__)

Answer = Union[ExpertAnswer, ExpertWithContextAnswer, AIAnswer, NoAnswer]

EXPERT_SOURCE_DOCUMENT = "Expert Override"
EXPERT_SOURCE_SECTION = "Expert Correction"


class AnswerState(str, Enum):
    IDLE = "idle"
    CHECKING_OVERRIDE = "checking_override"
    SEARCHING_CHUNKS = "searching_chunks"
    ASSEMBLING_CONTEXT = "assembling_context"
    GENERATING_ANSWER = "generating_answer"
    COMPOSED = "composed"


def grade_confidence(top_similarity: float) -> str:

    if top_similarity > HIGH_CONFIDENCE_SIMILARITY:
        return "high"

    if top_similarity > MEDIUM_CONFIDENCE_SIMILARITY:
        return "medium"

    return "low"


def relevance_band(similarity: float) -> str:

    if similarity > HIGH_CONFIDENCE_SIMILARITY:
        return "High"

    if similarity > MEDIUM_CONFIDENCE_SIMILARITY:
        return "Medium"

    return "Low"


def preview(text: str, limit: int = SOURCE_PREVIEW_CHARACTERS) -> str:

    if len(text) <= limit:
        return text

    return text[:limit] + "..."


def chunk_sources(context: AssembledContext) -> List[Source]:

    return [
        Source(
            document=context.document_name(chunk),
            section=section_label(chunk),
            content=preview(chunk.content),
            similarity=round(chunk.similarity * 100),
            relevance=relevance_band(chunk.similarity),
        )
        for chunk in context.used_chunks
    ]


def expert_source(match: OverrideMatch) -> Source:

    return Source(
        document=EXPERT_SOURCE_DOCUMENT,
        section=EXPERT_SOURCE_SECTION,
        content=preview(match.override.corrected_answer),
        similarity=round(match.similarity * 100),
        relevance="Expert",
    )


class AnswerComposer:
    """
    Answers a question from expert overrides and policy chunks.

    Per request: embed the question, look up an override and search chunks
    concurrently, assemble context from the chunks, generate when there is
    context, and compose one of four answer shapes. A failing override
    lookup degrades to "no override"; every other failure fails the request.
    An override is recorded as used only when the composed answer is an
    expert answer, never for a lookup whose result was discarded.
    """

    def __init__(
        self,
        embedder: Embedder,
        chunk_store: ChunkStore,
        matcher: OverrideMatcher,
        llm_client: LLMClient,
        documents: DocumentRegistry,
    ):

        self._embedder = embedder
        self._chunk_store = chunk_store
        self._matcher = matcher
        self._llm = llm_client
        self._documents = documents

    def _enter(self, state: AnswerState, **extra):
        logger.debug("answer_state", extra={"state": state.value, **extra})

    def answer(
        self,
        question: str,
        settings: SearchSettings,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Answer:

        if not question or not question.strip():
            raise ValidationError("Question is required", field="question")

        question = question.strip()
        start = time.time()

        self._enter(AnswerState.IDLE, document_id=document_id)

        question_vector = call_with_timeout(
            "embedding",
            EMBEDDING_TIMEOUT_SECONDS,
            self._embedder.embed_one,
            question,
        )

        # the two lookups are independent; run them side by side
        self._enter(AnswerState.CHECKING_OVERRIDE)

        override_future = submit(
            self._matcher.find,
            question_vector,
            applicable_document_ids=[document_id] if document_id else None,
            caller_threshold=settings.similarity_threshold,
        )

        self._enter(AnswerState.SEARCHING_CHUNKS)

        chunk_future = submit(
            search_chunks,
            self._chunk_store,
            question_vector,
            settings.max_results,
            document_id,
        )

        chunks = wait_bounded(chunk_future, "chunk_search", SEARCH_TIMEOUT_SECONDS)

        try:
            lookup = OverrideLookup(
                match=wait_bounded(override_future, "override_search", SEARCH_TIMEOUT_SECONDS)
            )
        except Exception as e:
            lookup = degrade_override_failure(e)

        self._enter(AnswerState.ASSEMBLING_CONTEXT, chunks=len(chunks))

        names = self._documents.names({chunk.document_id for chunk in chunks})

        context = assemble_context(
            chunks,
            similarity_threshold=settings.similarity_threshold,
            max_context_chunks=settings.context_chunks,
            document_names=names,
        )

        documents_searched = len({chunk.document_id for chunk in chunks})

        if lookup.match is not None:
            result = self._compose_expert(question, lookup.match, context, documents_searched)
            self._matcher.record_usage(lookup.match, question=question, user_id=user_id)
        else:
            result = self._compose_ai(question, context, documents_searched)

        self._enter(AnswerState.COMPOSED, kind=result.kind)

        logger.info(
            "Question answered",
            extra={
                "kind": result.kind,
                "confidence": result.confidence,
                "chunks_found": len(chunks),
                "override_degraded": lookup.degraded,
                "latency_seconds": round(time.time() - start, 3),
            },
        )

        return result

    # ============================================================
    # COMPOSITION
    # ============================================================

    def _generate(self, question: str, context: AssembledContext) -> str:

        self._enter(AnswerState.GENERATING_ANSWER, context_chunks=len(context.used_chunks))

        return call_with_timeout(
            "generation",
            GENERATION_TIMEOUT_SECONDS,
            self._llm.generate,
            question,
            context.prompt_text,
        )

    def _compose_expert(
        self,
        question: str,
        match: OverrideMatch,
        context: Union[AssembledContext, NoRelevantContext],
        documents_searched: int,
    ) -> Answer:

        override = match.override

        if isinstance(context, NoRelevantContext):

            return ExpertAnswer(
                question=question,
                expert_answer=override.corrected_answer,
                expert_explanation=override.expert_explanation,
                override_id=override.id,
                similarity=match.similarity,
                sources=[expert_source(match)],
            )

        try:
            ai_answer = self._generate(question, context)

        except (DownstreamUnavailable, DownstreamTimeout) as e:
            # the expert answer stands on its own; the generated part is extra
            logger.warning(
                "Supplementary generation failed, returning expert answer only",
                extra={"override_id": override.id, "error": str(e)},
            )

            return ExpertAnswer(
                question=question,
                expert_answer=override.corrected_answer,
                expert_explanation=override.expert_explanation,
                override_id=override.id,
                similarity=match.similarity,
                sources=[expert_source(match)],
            )

        return ExpertWithContextAnswer(
            question=question,
            expert_answer=override.corrected_answer,
            expert_explanation=override.expert_explanation,
            override_id=override.id,
            similarity=match.similarity,
            answer=ai_answer,
            sources=[expert_source(match)] + chunk_sources(context),
            search_results=len(context.used_chunks),
            documents_searched=documents_searched,
        )

    def _compose_ai(
        self,
        question: str,
        context: Union[AssembledContext, NoRelevantContext],
        documents_searched: int,
    ) -> Answer:

        if isinstance(context, NoRelevantContext):

            template = LOW_RELEVANCE_ANSWER if context.chunks_considered else NO_CONTENT_ANSWER

            return NoAnswer(
                question=question,
                answer=template.format(question=question),
            )

        answer = self._generate(question, context)

        return AIAnswer(
            question=question,
            answer=answer,
            confidence=grade_confidence(context.top_similarity),
            sources=chunk_sources(context),
            search_results=len(context.used_chunks),
            documents_searched=documents_searched,
        )

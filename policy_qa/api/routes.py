import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from policy_qa.config import PLACEHOLDER_USER_ID
from policy_qa.observability.logger import (
    log_request_complete,
    log_request_error,
    log_request_start,
)
from policy_qa.observability.metrics import metrics_tracker
from policy_qa.observability.posthog_client import posthog_client
from policy_qa.models import (
    AnswerResponse,
    AskRequest,
    CreateHintRequest,
    CreateOverrideRequest,
    DeleteDocumentResponse,
    DocumentInfo,
    EmbeddingCheckResponse,
    HealthResponse,
    HintSearchRequest,
    HintSearchResponse,
    IngestDocumentRequest,
    IngestResponse,
    ListDocumentsResponse,
    OverrideRecord,
    OverrideSearchRequest,
    OverrideSearchResponse,
    OverrideUsage,
    OverrideVersion,
    RepairResponse,
    ReprocessResponse,
    SearchSettings,
    SearchSettingsUpdate,
    UnderwriterHint,
    UpdateOverrideRequest,
)
from policy_qa.services import Services, get_services


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


# ============================================================
# HEALTH AND METRICS
# ============================================================

@router.get("/health", response_model=HealthResponse)
def health_check(services: Services = Depends(get_services)):

    return HealthResponse(
        status="healthy",
        total_documents=len(services.documents),
        total_chunks=services.chunk_store.count(),
        active_overrides=services.override_repository.count_active(),
    )


@router.get("/metrics")
def get_metrics():

    return metrics_tracker.get_metrics()


# ============================================================
# QUESTIONS
# ============================================================

@router.post("/ask", response_model=AnswerResponse)
def ask_question(
    payload: AskRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    request_id = _request_id(request)
    start_time = time.time()

    log_request_start(
        logger,
        request_id,
        "ask",
        question_length=len(payload.question),
        document_id=payload.document_id,
    )

    if payload.document_id is not None:
        # unknown scope is a 404, not an empty search
        services.documents.get(payload.document_id)

    try:

        result = services.composer.answer(
            payload.question,
            settings=services.settings.get(),
            document_id=payload.document_id,
            user_id=payload.user_id or PLACEHOLDER_USER_ID,
        )

    except Exception as e:
        metrics_tracker.record_answer("failed")
        log_request_error(logger, request_id, "ask", e)
        raise

    latency = time.time() - start_time

    metrics_tracker.record_answer(result.kind)

    log_request_complete(
        logger,
        request_id,
        "ask",
        latency,
        kind=result.kind,
        confidence=result.confidence,
        sources=len(result.sources),
    )

    if result.kind in ("expert", "expert_with_context"):
        posthog_client.track_override_match(
            distinct_id=request_id,
            override_id=result.override_id,
            similarity=result.similarity,
        )

    posthog_client.track_question(
        distinct_id=request_id,
        question=payload.question,
        kind=result.kind,
        confidence=result.confidence,
        sources=len(result.sources),
        latency=latency,
    )

    return result


# ============================================================
# SEARCH SETTINGS
# ============================================================

@router.get("/settings", response_model=SearchSettings)
def get_search_settings(services: Services = Depends(get_services)):

    return services.settings.get()


@router.post("/settings", response_model=SearchSettings)
def update_search_settings(
    payload: SearchSettingsUpdate,
    services: Services = Depends(get_services),
):

    return services.settings.update(**payload.model_dump())


# ============================================================
# DOCUMENTS
# ============================================================

@router.post("/documents", response_model=IngestResponse)
def ingest_document(
    payload: IngestDocumentRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    start_time = time.time()

    record = services.ingestion.ingest(
        file_name=payload.file_name,
        text=payload.text,
        file_type=payload.file_type,
    )

    posthog_client.track_document_ingested(
        distinct_id=_request_id(request),
        document_id=record.id,
        file_name=record.file_name,
        chunks=record.chunk_count,
        latency=time.time() - start_time,
    )

    return IngestResponse(
        document_id=record.id,
        file_name=record.file_name,
        chunks_created=record.chunk_count,
    )


@router.get("/documents", response_model=ListDocumentsResponse)
def list_documents(services: Services = Depends(get_services)):

    documents = [
        DocumentInfo(**record.model_dump(exclude={"text"}))
        for record in services.documents.list()
    ]

    return ListDocumentsResponse(
        documents=documents,
        total_documents=len(documents),
        total_chunks=sum(d.chunk_count for d in documents),
    )


@router.post("/documents/reprocess", response_model=ReprocessResponse)
def reprocess_documents(
    document_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):

    return services.ingestion.reprocess(document_id)


@router.get("/documents/embeddings/verify", response_model=EmbeddingCheckResponse)
def verify_embeddings(services: Services = Depends(get_services)):

    return services.ingestion.verify_embeddings()


@router.post("/documents/embeddings/repair", response_model=RepairResponse)
def repair_embeddings(services: Services = Depends(get_services)):

    return services.ingestion.repair_embeddings()


@router.get("/documents/{document_id}", response_model=DocumentInfo)
def get_document(document_id: str, services: Services = Depends(get_services)):

    record = services.documents.get(document_id)

    return DocumentInfo(**record.model_dump(exclude={"text"}))


@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
def delete_document(document_id: str, services: Services = Depends(get_services)):

    removed = services.ingestion.delete(document_id)

    return DeleteDocumentResponse(
        document_id=document_id,
        message=f"Deleted document and {removed} chunks",
        success=True,
    )


# ============================================================
# EXPERT OVERRIDES
# ============================================================

@router.get("/overrides", response_model=List[OverrideRecord])
def list_overrides(
    active: bool = Query(True),
    services: Services = Depends(get_services),
):

    return services.overrides.list(active=active)


@router.post("/overrides", response_model=OverrideRecord)
def create_override(
    payload: CreateOverrideRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    record = services.overrides.create(**payload.model_dump())

    posthog_client.track_override_change(
        distinct_id=_request_id(request),
        override_id=record.id,
        action="created",
        version=1,
    )

    return record


@router.post("/overrides/search", response_model=OverrideSearchResponse)
def search_overrides(
    payload: OverrideSearchRequest,
    services: Services = Depends(get_services),
):

    match = services.overrides.search(
        payload.question,
        document_ids=payload.document_ids,
        similarity_threshold=payload.similarity_threshold,
        user_id=PLACEHOLDER_USER_ID,
    )

    if match is None:
        return OverrideSearchResponse(found=False)

    return OverrideSearchResponse(
        found=True,
        override=match.override,
        similarity=match.similarity,
    )


@router.get("/overrides/{override_id}", response_model=OverrideRecord)
def get_override(override_id: str, services: Services = Depends(get_services)):

    return services.overrides.get(override_id)


@router.patch("/overrides/{override_id}", response_model=OverrideRecord)
def update_override(
    override_id: str,
    payload: UpdateOverrideRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    record = services.overrides.update(override_id, **payload.model_dump())

    posthog_client.track_override_change(
        distinct_id=_request_id(request),
        override_id=override_id,
        action="updated",
    )

    return record


@router.get("/overrides/{override_id}/versions", response_model=List[OverrideVersion])
def list_override_versions(override_id: str, services: Services = Depends(get_services)):

    return services.overrides.versions(override_id)


@router.get("/overrides/{override_id}/usage", response_model=List[OverrideUsage])
def list_override_usage(override_id: str, services: Services = Depends(get_services)):

    return services.overrides.usage(override_id)


# ============================================================
# UNDERWRITER HINTS
# ============================================================

@router.post("/hints", response_model=UnderwriterHint)
def create_hint(
    payload: CreateHintRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    hint = services.hints.create(**payload.model_dump())

    posthog_client.track_hint_created(
        distinct_id=_request_id(request),
        hint_id=hint.id,
        category=hint.category,
        is_global=hint.is_global,
    )

    return hint


@router.get("/hints", response_model=List[UnderwriterHint])
def list_hints(
    document_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):

    return services.hints.list(document_id=document_id)


@router.post("/hints/search", response_model=HintSearchResponse)
def search_hints(
    payload: HintSearchRequest,
    services: Services = Depends(get_services),
):

    return services.hints.search(payload.query, document_id=payload.document_id)

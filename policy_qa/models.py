# policy_qa/models.py
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# DOCUMENTS AND CHUNKS
# ============================================================

class DocumentRecord(BaseModel):
    """An uploaded policy and its extracted text."""
    id: str
    file_name: str
    file_type: str = "text/plain"
    file_size: int = 0
    text: str
    chunk_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class RankedChunk(BaseModel):
    """One chunk-index hit, ordered by descending similarity."""
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    sequence_index: int
    content: str
    similarity: float


# ============================================================
# EXPERT OVERRIDES
# ============================================================

class OverrideRecord(BaseModel):
    """A human-verified answer that preempts generation for similar questions."""
    id: str
    original_question: str
    original_answer: str
    corrected_answer: str
    expert_explanation: Optional[str] = None
    expert_id: str
    confidence_threshold: float = Field(0.85, ge=0.0, le=1.0)
    is_active: bool = True
    applies_to_all_documents: bool = False
    document_ids: List[str] = Field(default_factory=list)
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OverrideVersion(BaseModel):
    model_config = ConfigDict(frozen=True)

    override_id: str
    version_number: int = Field(..., ge=1)
    corrected_answer: str
    expert_explanation: Optional[str] = None
    changed_by: str
    change_reason: str
    created_at: datetime = Field(default_factory=utcnow)


class OverrideUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    override_id: str
    question_asked: str
    similarity_score: float
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class OverrideMatch(BaseModel):
    """A qualifying override and its similarity to the question."""
    model_config = ConfigDict(frozen=True)

    override: OverrideRecord
    similarity: float


# ============================================================
# UNDERWRITER HINTS
# ============================================================

HintCategory = Literal[
    "coverage_interpretation",
    "exclusions",
    "claims_handling",
    "policy_notes",
    "risk_assessment",
    "regulatory_notes",
    "general",
]


class UnderwriterHint(BaseModel):
    """
    Free-form underwriter knowledge, either attached to one policy document
    or global to a policy type.
    """
    id: str
    title: str
    content: str
    category: HintCategory
    tags: List[str] = Field(default_factory=list)
    document_id: Optional[str] = None
    policy_type: Optional[str] = None
    is_global: bool = False
    underwriter_id: str
    created_at: datetime = Field(default_factory=utcnow)


class PolicyRecommendation(BaseModel):
    """A policy document surfaced by one of its hints."""
    document_id: str
    file_name: str
    file_type: str
    policy_type: str
    relevance_score: float
    match_reason: str
    matched_content: str
    hint_title: str
    hint_category: str


class KnowledgeMatch(BaseModel):
    """A global hint relevant to a query; not tied to a document."""
    hint_id: str
    title: str
    category: str
    policy_type: Optional[str] = None
    similarity: float


# ============================================================
# SEARCH SETTINGS
# ============================================================

class SearchSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    similarity_threshold: float = 0.3
    max_results: int = 15
    context_chunks: int = 5


class SearchSettingsUpdate(BaseModel):
    """Partial update; bounds are checked by the settings store."""
    similarity_threshold: Optional[float] = None
    max_results: Optional[int] = None
    context_chunks: Optional[int] = None


# ============================================================
# ANSWERS
# ============================================================

Relevance = Literal["Expert", "High", "Medium", "Low"]


class Source(BaseModel):
    document: str
    section: str
    content: str
    similarity: int
    relevance: Relevance


class ExpertAnswer(BaseModel):
    """Override matched and there was no usable document context."""
    kind: Literal["expert"] = "expert"
    question: str
    expert_answer: str
    expert_explanation: Optional[str] = None
    override_id: str
    similarity: float
    confidence: Literal["expert"] = "expert"
    sources: List[Source]


class ExpertWithContextAnswer(BaseModel):
    """Override answer first, generated answer as additional context."""
    kind: Literal["expert_with_context"] = "expert_with_context"
    question: str
    expert_answer: str
    expert_explanation: Optional[str] = None
    override_id: str
    similarity: float
    answer: str
    answer_label: str = "Additional context"
    confidence: Literal["expert"] = "expert"
    sources: List[Source]
    search_results: int
    documents_searched: int


class AIAnswer(BaseModel):
    kind: Literal["ai"] = "ai"
    question: str
    answer: str
    confidence: Literal["high", "medium", "low"]
    sources: List[Source]
    search_results: int
    documents_searched: int


class NoAnswer(BaseModel):
    """Nothing relevant was found; no generation call was made."""
    kind: Literal["none"] = "none"
    question: str
    answer: str
    confidence: Literal["none"] = "none"
    sources: List[Source] = Field(default_factory=list)


AnswerResponse = Annotated[
    Union[ExpertAnswer, ExpertWithContextAnswer, AIAnswer, NoAnswer],
    Field(discriminator="kind"),
]


# ============================================================
# API REQUESTS
# ============================================================

class AskRequest(BaseModel):
    """Request to ask a question across uploaded policies."""
    question: str = Field(..., min_length=1, max_length=2000)
    document_id: Optional[str] = Field(None, max_length=100)
    user_id: Optional[str] = None

    @field_validator("question")
    @classmethod
    def validate_question(cls, v):
        """Ensure question is not just whitespace."""
        if not v.strip():
            raise ValueError("Question cannot be empty or only whitespace")
        return v.strip()


class IngestDocumentRequest(BaseModel):
    """Already-extracted document text to chunk and index."""
    file_name: str = Field(..., min_length=1, max_length=255)
    text: str = Field(..., min_length=1)
    file_type: str = "text/plain"


class CreateOverrideRequest(BaseModel):
    original_question: str
    original_answer: str
    corrected_answer: str
    expert_id: str
    expert_explanation: Optional[str] = None
    confidence_threshold: float = 0.85
    applies_to_all_documents: bool = False
    document_ids: List[str] = Field(default_factory=list)


class UpdateOverrideRequest(BaseModel):
    corrected_answer: Optional[str] = None
    expert_explanation: Optional[str] = None
    confidence_threshold: Optional[float] = None
    is_active: Optional[bool] = None
    applies_to_all_documents: Optional[bool] = None
    document_ids: Optional[List[str]] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None


class OverrideSearchRequest(BaseModel):
    question: str = Field(..., min_length=1)
    document_ids: Optional[List[str]] = None
    similarity_threshold: float = Field(0.85, ge=0.0, le=1.0)


class CreateHintRequest(BaseModel):
    title: str
    content: str
    category: str
    tags: List[str] = Field(default_factory=list)
    document_id: Optional[str] = None
    policy_type: Optional[str] = None
    is_global: bool = False
    underwriter_id: Optional[str] = None


class HintSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    document_id: Optional[str] = None


# ============================================================
# API RESPONSES
# ============================================================

class DocumentInfo(BaseModel):
    id: str
    file_name: str
    file_type: str
    file_size: int
    chunk_count: int
    created_at: datetime


class IngestResponse(BaseModel):
    document_id: str
    file_name: str
    chunks_created: int
    message: str = "Document chunked and indexed successfully"


class ListDocumentsResponse(BaseModel):
    documents: List[DocumentInfo]
    total_documents: int
    total_chunks: int


class DeleteDocumentResponse(BaseModel):
    document_id: str
    message: str
    success: bool


class ReprocessResponse(BaseModel):
    total_documents: int
    processed_count: int
    error_count: int
    message: str


class UnsearchableChunk(BaseModel):
    chunk_id: str
    document_id: str
    sequence_index: int
    embedding_length: int


class EmbeddingCheckResponse(BaseModel):
    total_chunks: int
    expected_dimension: int
    unsearchable: List[UnsearchableChunk]
    all_embeddings_correct: bool


class RepairResponse(BaseModel):
    total_chunks: int
    fixed_count: int
    error_count: int
    message: str


class OverrideSearchResponse(BaseModel):
    found: bool
    override: Optional[OverrideRecord] = None
    similarity: Optional[float] = None


class HintSearchResponse(BaseModel):
    query: str
    recommendations: List[PolicyRecommendation]
    global_knowledge: List[KnowledgeMatch] = Field(default_factory=list)
    total_matches: int
    message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    total_documents: int
    total_chunks: int
    active_overrides: int

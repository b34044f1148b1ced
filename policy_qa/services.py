# policy_qa/services.py
"""Construction of the long-lived collaborators behind the API."""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from qdrant_client import QdrantClient

from policy_qa.config import STORAGE_DIR
from policy_qa.hints.index import HintIndex
from policy_qa.hints.knowledge import HintManager
from policy_qa.hints.store import HintRepository
from policy_qa.llm.client import LLMClient
from policy_qa.memory.documents import DocumentRegistry
from policy_qa.memory.embedder import Embedder
from policy_qa.memory.qdrant_client import QdrantVectorDB
from policy_qa.memory.store import ChunkStore
from policy_qa.overrides.index import OverrideIndex
from policy_qa.overrides.lifecycle import OverrideManager
from policy_qa.overrides.matcher import OverrideMatcher
from policy_qa.overrides.store import OverrideRepository
from policy_qa.settings import SearchSettingsStore
from policy_qa.workflow.document_qa import AnswerComposer
from policy_qa.workflow.ingestion import DocumentIngestion


logger = logging.getLogger(__name__)


@dataclass
class Services:
    documents: DocumentRegistry
    chunk_store: ChunkStore
    ingestion: DocumentIngestion
    overrides: OverrideManager
    override_repository: OverrideRepository
    hints: HintManager
    composer: AnswerComposer
    settings: SearchSettingsStore


def build_services(
    embedder: Embedder,
    llm_client: LLMClient,
    qdrant: Optional[QdrantClient] = None,
    storage_dir: Optional[str] = STORAGE_DIR,
) -> Services:

    vector_db = QdrantVectorDB(client=qdrant, dim=embedder.get_dimension())

    documents = DocumentRegistry(storage_dir)
    chunk_store = ChunkStore(vector_db)

    override_repository = OverrideRepository(storage_dir)
    override_index = OverrideIndex(vector_db)
    matcher = OverrideMatcher(override_index, override_repository)

    services = Services(
        documents=documents,
        chunk_store=chunk_store,
        ingestion=DocumentIngestion(embedder, chunk_store, documents),
        overrides=OverrideManager(override_repository, override_index, embedder, matcher),
        override_repository=override_repository,
        hints=HintManager(HintRepository(storage_dir), HintIndex(vector_db), embedder, documents),
        composer=AnswerComposer(embedder, chunk_store, matcher, llm_client, documents),
        settings=SearchSettingsStore(storage_dir),
    )

    services.overrides.sync_index()
    services.hints.sync_index()

    logger.info("Services initialized", extra={"storage_dir": storage_dir})

    return services


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """FastAPI dependency; builds the production services on first use."""

    global _services

    if _services is None:
        with _services_lock:
            if _services is None:
                _services = build_services(Embedder(), LLMClient())

    return _services

import logging
from typing import Optional

from qdrant_client import QdrantClient
from qdrant_client.http.models import (
    Distance,
    PayloadSchemaType,
    VectorParams,
)

from policy_qa.config import (
    EMBEDDING_DIMENSION,
    QDRANT_API_KEY,
    QDRANT_CHUNK_COLLECTION,
    QDRANT_HINT_COLLECTION,
    QDRANT_OVERRIDE_COLLECTION,
    QDRANT_URL,
    SEARCH_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


# collection -> payload fields that are filtered on
_PAYLOAD_INDEXES = {
    QDRANT_CHUNK_COLLECTION: {
        "document_id": PayloadSchemaType.KEYWORD,
    },
    QDRANT_OVERRIDE_COLLECTION: {
        "is_active": PayloadSchemaType.BOOL,
        "applies_to_all_documents": PayloadSchemaType.BOOL,
        "document_ids": PayloadSchemaType.KEYWORD,
    },
    QDRANT_HINT_COLLECTION: {
        "document_id": PayloadSchemaType.KEYWORD,
        "is_global": PayloadSchemaType.BOOL,
    },
}


def connect(url: str = QDRANT_URL, api_key: Optional[str] = QDRANT_API_KEY) -> QdrantClient:

    if url == ":memory:":
        return QdrantClient(location=":memory:")

    return QdrantClient(
        url=url,
        api_key=api_key,
        timeout=int(SEARCH_TIMEOUT_SECONDS),
    )


class QdrantVectorDB:
    """
    Owns the Qdrant connection and the logical indexes:

    - the document-chunk collection (many points per document)
    - the override collection (one point per expert correction)
    - the hint collection (one point per underwriter hint)
    """

    def __init__(
        self,
        client: Optional[QdrantClient] = None,
        dim: int = EMBEDDING_DIMENSION,
        chunk_collection: str = QDRANT_CHUNK_COLLECTION,
        override_collection: str = QDRANT_OVERRIDE_COLLECTION,
        hint_collection: str = QDRANT_HINT_COLLECTION,
    ):

        self._dim = dim
        self._client = client or connect()

        self.chunk_collection = chunk_collection
        self.override_collection = override_collection
        self.hint_collection = hint_collection

        for name in (chunk_collection, override_collection, hint_collection):
            self.ensure_collection(name)

        logger.info(
            "Qdrant client initialized",
            extra={
                "collections": [chunk_collection, override_collection, hint_collection],
                "dimension": dim,
            },
        )

    @property
    def client(self) -> QdrantClient:
        return self._client

    def ensure_collection(self, name: str):

        if not self._client.collection_exists(name):

            self._client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(
                    size=self._dim,
                    distance=Distance.COSINE,
                ),
            )

            logger.info("Qdrant collection created", extra={"collection": name})

        for field_name, schema in _PAYLOAD_INDEXES.get(name, {}).items():

            try:

                self._client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=schema,
                )

            except Exception as e:
                # already present, or unsupported in local mode
                logger.debug(
                    "Payload index skipped",
                    extra={"collection": name, "field": field_name, "error": str(e)},
                )

    def recreate_collection(self, name: str):

        if self._client.collection_exists(name):
            self._client.delete_collection(name)

        self.ensure_collection(name)

    def collection_dimension(self, name: str) -> int:

        info = self._client.get_collection(name)

        return info.config.params.vectors.size

"""
Processing callback joining the transformer and the bulk indexer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .consumer.models import SourceItem
from .consumer.transformer import DocumentTransformer, build_upsert_body, document_id
from .indexer.bulk import BulkIndexer, BulkIndexerItem
from .monitoring.middleware import (
    record_document_failed,
    record_document_indexed,
    record_document_submitted,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineMetrics:
    documents_submitted: int = 0
    documents_indexed: int = 0
    documents_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class IndexingPipeline:
    """
    Transform a source item and hand the document to the bulk indexer.

    Calling the pipeline returns once the document is queued. The write
    outcome arrives later through the bulk item callbacks, which log it and
    update the pipeline metrics.
    """

    def __init__(self, transformer: DocumentTransformer, indexer: BulkIndexer):
        self.transformer = transformer
        self.indexer = indexer
        self.metrics = PipelineMetrics()

    async def __call__(self, item: SourceItem) -> None:
        """
        Raises:
            TransformationError: If the item cannot be transformed
            SubmissionError: If the indexer did not accept the document
        """
        document = self.transformer.transform(item)

        await self.indexer.submit(BulkIndexerItem(
            document_id=document_id(item),
            body=build_upsert_body(document),
            on_success=self._on_success,
            on_failure=self._on_failure,
        ))

        self.metrics.documents_submitted += 1
        record_document_submitted()

    def _on_success(self, item: BulkIndexerItem, response: Dict[str, Any]) -> None:
        self.metrics.documents_indexed += 1
        result = response.get("result", "unknown")
        record_document_indexed(result)
        logger.debug(f"Indexed document {item.document_id} ({result})")

    def _on_failure(
        self,
        item: BulkIndexerItem,
        response: Optional[Dict[str, Any]],
        error: Optional[BaseException],
    ) -> None:
        self.metrics.documents_failed += 1

        if error is not None:
            error_type = type(error).__name__
            logger.error(f"Failed to index document {item.document_id}: {error}")
        else:
            reason = (response or {}).get("error") or {}
            error_type = reason.get("type", "unknown") if isinstance(reason, dict) else "unknown"
            detail = reason.get("reason", reason) if isinstance(reason, dict) else reason
            status = (response or {}).get("status")
            logger.error(f"Failed to index document {item.document_id}: [{status}] {error_type}: {detail}")

        record_document_failed(error_type)

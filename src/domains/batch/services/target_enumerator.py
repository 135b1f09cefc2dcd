"""Target enumeration against the tree/document directory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from src.domains.batch.core.errors import EnumerationError, RootNotFoundError
from src.domains.batch.core.sync_target import SyncTargetError, parse_sync_target
from src.models.target import Target, TargetKind
from src.services.directory_client import DirectoryError, DirectoryNotFoundError
from src.utils.retry import TransientServiceError

if TYPE_CHECKING:
    from src.services.protocols import DirectoryProtocol

logger = structlog.get_logger(__name__)

DOCUMENT_PAGE_SIZE = 100

# requests exceptions derive from OSError.
_DIRECTORY_FAILURES: tuple[type[Exception], ...] = (
    DirectoryError,
    TransientServiceError,
    OSError,
)


def _is_deleted(item: dict[str, Any]) -> bool:
    return item.get("deleted_at") is not None


def _node_path(node: dict[str, Any]) -> str:
    return str(node.get("path") or node.get("name") or node.get("id"))


def fetch_node_documents(directory: DirectoryProtocol, node_id: int) -> list[dict[str, Any]]:
    """Collect every live document bound directly to a node, page by page."""
    documents: list[dict[str, Any]] = []
    page = 1
    while True:
        result = directory.list_node_documents(
            node_id, page=page, size=DOCUMENT_PAGE_SIZE, include_descendants=False
        )
        items = result.get("items") or []
        documents.extend(doc for doc in items if not _is_deleted(doc))
        if len(items) < DOCUMENT_PAGE_SIZE or page * DOCUMENT_PAGE_SIZE >= result.get("total", 0):
            break
        page += 1
    return documents


def source_document_entries(sources: list[dict[str, Any]]) -> list[tuple[int, str | None]]:
    """Reduce source relations to (document_id, document type) pairs."""
    entries: list[tuple[int, str | None]] = []
    for source in sources:
        document = source.get("document") or {}
        doc_id = source.get("document_id") or document.get("id")
        if doc_id is None or _is_deleted(document):
            continue
        entries.append((int(doc_id), document.get("type")))
    return entries


class _DirectoryWalker:
    """Shared depth-first walk over live nodes below a root."""

    def __init__(self, directory: DirectoryProtocol) -> None:
        self.directory = directory

    def _root(self, root_target_id: int) -> dict[str, Any]:
        try:
            root = self.directory.get_node(root_target_id)
        except DirectoryNotFoundError as e:
            raise RootNotFoundError(root_target_id) from e
        if not root or _is_deleted(root):
            raise RootNotFoundError(root_target_id)
        return root

    def walk(
        self, root_target_id: int, include_descendants: bool
    ) -> list[tuple[dict[str, Any], int]]:
        """Return (node, depth) pairs in pre-order, skipping deleted subtrees."""
        visited: list[tuple[dict[str, Any], int]] = []
        stack: list[tuple[dict[str, Any], int]] = [(self._root(root_target_id), 0)]
        while stack:
            node, depth = stack.pop()
            visited.append((node, depth))
            if not include_descendants:
                continue
            children = self.directory.list_children(int(node["id"]))
            live = [child for child in children if not _is_deleted(child)]
            stack.extend((child, depth + 1) for child in reversed(live))
        return visited


class NodeTargetEnumerator(_DirectoryWalker):
    """Enumerates nodes as targets for per-node workflow batches.

    Each node target carries its source documents and the number of direct
    documents that are not sources (its outputs).
    """

    def enumerate(self, root_target_id: int, include_descendants: bool) -> list[Target]:
        try:
            targets = [
                self._build_target(node, depth)
                for node, depth in self.walk(root_target_id, include_descendants)
            ]
        except RootNotFoundError:
            raise
        except _DIRECTORY_FAILURES as e:
            logger.error("node_enumeration_failed", root_target_id=root_target_id, error=str(e))
            msg = f"failed to enumerate nodes under {root_target_id}: {e}"
            raise EnumerationError(msg) from e

        logger.info(
            "nodes_enumerated",
            root_target_id=root_target_id,
            include_descendants=include_descendants,
            count=len(targets),
        )
        return targets

    def _build_target(self, node: dict[str, Any], depth: int) -> Target:
        node_id = int(node["id"])
        sources = source_document_entries(self.directory.list_source_documents(node_id))
        source_ids = {doc_id for doc_id, _ in sources}
        documents = fetch_node_documents(self.directory, node_id)
        output_count = sum(1 for doc in documents if int(doc["id"]) not in source_ids)
        return Target(
            target_id=node_id,
            kind=TargetKind.NODE,
            display_name=str(node.get("name") or node_id),
            display_path=_node_path(node),
            depth=depth,
            node_id=node_id,
            source_doc_ids=tuple(doc_id for doc_id, _ in sources),
            source_doc_types=tuple(doc_type for _, doc_type in sources),
            output_doc_count=output_count,
        )


class DocumentTargetEnumerator(_DirectoryWalker):
    """Enumerates documents under nodes as targets for per-document sync batches.

    A node's own source documents are workflow inputs and are never sync
    targets. A document bound to several nodes is a single target, kept at
    the first node the walk reaches.
    """

    def enumerate(self, root_target_id: int, include_descendants: bool) -> list[Target]:
        targets: list[Target] = []
        seen: set[int] = set()
        try:
            for node, depth in self.walk(root_target_id, include_descendants):
                for target in self._node_documents(node, depth):
                    if target.target_id in seen:
                        logger.debug(
                            "duplicate_document_binding_skipped",
                            document_id=target.target_id,
                            node_id=target.node_id,
                        )
                        continue
                    seen.add(target.target_id)
                    targets.append(target)
        except RootNotFoundError:
            raise
        except _DIRECTORY_FAILURES as e:
            logger.error("document_enumeration_failed", root_target_id=root_target_id, error=str(e))
            msg = f"failed to enumerate documents under {root_target_id}: {e}"
            raise EnumerationError(msg) from e

        logger.info(
            "documents_enumerated",
            root_target_id=root_target_id,
            include_descendants=include_descendants,
            count=len(targets),
        )
        return targets

    def _source_ids(self, node_id: int) -> set[int]:
        try:
            sources = self.directory.list_source_documents(node_id)
        except _DIRECTORY_FAILURES as e:
            # Not fatal: the node is treated as having no sources.
            logger.warning("source_documents_unavailable", node_id=node_id, error=str(e))
            return set()
        return {doc_id for doc_id, _ in source_document_entries(sources)}

    def _node_documents(self, node: dict[str, Any], depth: int) -> list[Target]:
        node_id = int(node["id"])
        source_ids = self._source_ids(node_id)
        targets: list[Target] = []
        for document in fetch_node_documents(self.directory, node_id):
            doc_id = int(document["id"])
            if doc_id in source_ids:
                continue
            sync_target = None
            sync_target_error = None
            try:
                sync_target = parse_sync_target(document.get("metadata"))
            except SyncTargetError as e:
                sync_target_error = str(e)
            targets.append(
                Target(
                    target_id=doc_id,
                    kind=TargetKind.DOCUMENT,
                    display_name=str(document.get("title") or doc_id),
                    display_path=_node_path(node),
                    depth=depth,
                    node_id=node_id,
                    doc_type=document.get("type"),
                    sync_target=sync_target,
                    sync_target_error=sync_target_error,
                )
            )
        return targets

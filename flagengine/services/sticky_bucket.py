# flagengine/services/sticky_bucket.py
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

Assignments = Dict[str, str]


def get_sticky_doc_key(attribute_name: str, attribute_value: Any) -> str:
    """Construct the document key for one (attribute, value) pair"""
    return f"{attribute_name}||{attribute_value}"


def sticky_bucket_key(experiment_key: str, bucket_version: Optional[int] = None) -> str:
    """Construct the assignment key for one experiment version"""
    return f"{experiment_key}__{bucket_version or 0}"


# ----- Collaborator interface -----
class StickyBucketService(ABC):
    """External store of sticky assignment documents.

    A document looks like::

        {"attributeName": "id", "attributeValue": "u1", "assignments": {"exp__0": "1"}}
    """

    @abstractmethod
    def get_assignments(self, attribute_name: str, attribute_value: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def save_assignments(self, attribute_name: str, attribute_value: str, assignments: Assignments) -> None:
        pass


# ----- In-memory store -----
class InMemoryStickyBucketService(StickyBucketService):
    def __init__(self):
        self.store: dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_assignments(self, attribute_name: str, attribute_value: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self.store.get(get_sticky_doc_key(attribute_name, attribute_value))
            if doc is None:
                return None
            return {**doc, "assignments": dict(doc["assignments"])}

    def save_assignments(self, attribute_name: str, attribute_value: str, assignments: Assignments) -> None:
        with self._lock:
            self.store[get_sticky_doc_key(attribute_name, attribute_value)] = {
                "attributeName": attribute_name,
                "attributeValue": attribute_value,
                "assignments": dict(assignments),
            }

    def clear(self) -> None:
        with self._lock:
            self.store.clear()


# ----- Singleton instance used by the HTTP service -----
sticky_bucket_service = InMemoryStickyBucketService()


# ----- Resolver bound to one evaluation session -----
class StickyVariation(NamedTuple):
    variation: int
    version_is_blocked: bool = False


class StickyBucketResolver:
    """
    Reads and writes sticky assignments through a StickyBucketService,
    caching documents for the lifetime of one evaluation session.
    """

    def __init__(self, service: StickyBucketService, docs: Optional[Dict[str, Dict[str, Any]]] = None):
        self.service = service
        self.docs: Dict[str, Optional[Dict[str, Any]]] = dict(docs or {})
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[key]

    def _assignments_for(self, attribute_name: Optional[str], attribute_value: Any) -> Assignments:
        if not attribute_name or attribute_value in (None, ""):
            return {}
        key = get_sticky_doc_key(attribute_name, attribute_value)
        if key not in self.docs:
            try:
                self.docs[key] = self.service.get_assignments(attribute_name, str(attribute_value))
            except Exception:
                logger.warning("Sticky bucket lookup failed for %s", key, exc_info=True)
                self.docs[key] = None
        doc = self.docs[key]
        if not doc:
            return {}
        return dict(doc.get("assignments") or {})

    def get_assignments(
        self,
        hash_attribute: Optional[str],
        hash_value: Any,
        fallback_attribute: Optional[str] = None,
        fallback_value: Any = None,
    ) -> Assignments:
        """Fallback-attribute assignments overlaid by hash-attribute assignments."""
        merged: Assignments = {}
        if fallback_attribute:
            merged.update(self._assignments_for(fallback_attribute, fallback_value))
        merged.update(self._assignments_for(hash_attribute, hash_value))
        return merged

    def get_variation(
        self,
        experiment_key: str,
        num_variations: int,
        bucket_version: Optional[int] = None,
        min_bucket_version: Optional[int] = None,
        meta: Optional[List[Any]] = None,
        hash_attribute: Optional[str] = None,
        hash_value: Any = None,
        fallback_attribute: Optional[str] = None,
        fallback_value: Any = None,
    ) -> StickyVariation:
        """
        Look up a previous assignment for this experiment.

        variation is -1 when there is none. version_is_blocked is set when an
        assignment exists for any bucket version below min_bucket_version; the
        subject must then be kept out of the experiment.
        """
        assignments = self.get_assignments(hash_attribute, hash_value, fallback_attribute, fallback_value)

        for version in range(min_bucket_version or 0):
            if sticky_bucket_key(experiment_key, version) in assignments:
                return StickyVariation(-1, True)

        stored = assignments.get(sticky_bucket_key(experiment_key, bucket_version))
        if stored is None:
            return StickyVariation(-1)
        return StickyVariation(_resolve_variation(stored, num_variations, meta))

    def save_assignment(self, attribute_name: str, attribute_value: Any, assignments: Assignments) -> bool:
        """
        Merge `assignments` into the document for (attribute_name, attribute_value).
        The service is only called when the document actually changed.
        """
        key = get_sticky_doc_key(attribute_name, attribute_value)
        with self._lock_for(key):
            existing = self._assignments_for(attribute_name, attribute_value)
            merged = {**existing, **assignments}
            if merged == existing:
                return False

            self.docs[key] = {
                "attributeName": attribute_name,
                "attributeValue": str(attribute_value),
                "assignments": merged,
            }
            try:
                self.service.save_assignments(attribute_name, str(attribute_value), merged)
            except Exception:
                logger.warning("Failed to persist sticky bucket assignment %s", key, exc_info=True)
            return True


def _resolve_variation(stored: Any, num_variations: int, meta: Optional[List[Any]]) -> int:
    stored = str(stored)
    for i, m in enumerate(meta or []):
        if _meta_key(m) == stored:
            return i
    if stored.isascii() and stored.isdecimal() and int(stored) < num_variations:
        return int(stored)
    return -1


def _meta_key(meta: Any) -> Optional[str]:
    if isinstance(meta, dict):
        return meta.get("key")
    return getattr(meta, "key", None)

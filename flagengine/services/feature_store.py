# flagengine/services/feature_store.py
import json
import logging
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError

from flagengine.schemas import Feature, FeatureSnapshot
from flagengine.services.decrypt import decrypt_payload

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Raised when a feature payload cannot be decrypted or parsed."""


def _decrypt_json(encrypted: str, decryption_key: Optional[str], what: str) -> Any:
    if not decryption_key:
        raise PayloadError(f"Payload has encrypted {what} but no decryption key is configured")
    plain = decrypt_payload(encrypted, decryption_key)
    if plain is None:
        raise PayloadError(f"Failed to decrypt {what}")
    try:
        return json.loads(plain)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Decrypted {what} are not valid JSON") from e


def parse_payload(payload: Dict[str, Any], decryption_key: Optional[str] = None) -> FeatureSnapshot:
    """
    Build a snapshot from a payload envelope:
    {"features": {...}, "savedGroups": {...}} with either part optionally
    delivered as "encryptedFeatures" / "encryptedSavedGroups".
    """
    if not isinstance(payload, dict):
        raise PayloadError("Payload must be a JSON object")

    features_raw = payload.get("features")
    if payload.get("encryptedFeatures"):
        features_raw = _decrypt_json(payload["encryptedFeatures"], decryption_key, "features")

    saved_groups = payload.get("savedGroups")
    if payload.get("encryptedSavedGroups"):
        saved_groups = _decrypt_json(payload["encryptedSavedGroups"], decryption_key, "saved groups")

    if features_raw is None:
        features_raw = {}
    if not isinstance(features_raw, dict):
        raise PayloadError("features must be an object keyed by feature key")

    try:
        return FeatureSnapshot(
            features={key: Feature.from_raw(raw) for key, raw in features_raw.items()},
            saved_groups=saved_groups or {},
        )
    except ValidationError as e:
        raise PayloadError(f"Invalid payload: {e.errors()[:1]}") from e


class FeatureStore:
    """
    Holds the current FeatureSnapshot.

    Publishing replaces the whole snapshot reference, so an evaluation that
    already took a snapshot never observes a half-updated rule set.
    """

    def __init__(self, decryption_key: Optional[str] = None):
        self.decryption_key = decryption_key
        self._snapshot = FeatureSnapshot()
        self._lock = threading.Lock()

    def snapshot(self) -> FeatureSnapshot:
        return self._snapshot

    def publish(self, payload: Dict[str, Any]) -> FeatureSnapshot:
        snapshot = parse_payload(payload, self.decryption_key)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Published %d features and %d saved groups",
            len(snapshot.features),
            len(snapshot.saved_groups),
        )
        return snapshot

    def load_file(self, path: str) -> FeatureSnapshot:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise PayloadError(f"Cannot read feature payload from {path}: {e}") from e
        return self.publish(payload)

    def clear(self) -> None:
        with self._lock:
            self._snapshot = FeatureSnapshot()

#!/usr/bin/env python3
"""
Firestore Source Adapter
------------------------
- Reads whole collections and single documents from a Firestore project
- Returns every document as RawDocument(id, fields) with JSON-safe values
- Auth/network failures raise SourceAccessError; a missing document is None

Credentials: pass the service-account JSON payload (as found in
FIREBASE_SERVICE_ACCOUNT_JSON) or leave it empty to use the default
Google credential chain (GOOGLE_APPLICATION_CREDENTIALS, gcloud, metadata server).
"""

import base64
import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound, RetryError
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.oauth2 import service_account

from linksdeck_migrate.errors import SourceAccessError
from linksdeck_migrate.field_coercion import format_time
from linksdeck_migrate.models import RawDocument

log = logging.getLogger(__name__)

_SOURCE_ERRORS = (GoogleAPICallError, RetryError, GoogleAuthError)


def normalize_json_secret(value: str) -> str:
    """Secrets pasted into env vars often carry literal '\\n' inside the private key."""
    if not value:
        return ""
    return value.replace("\\n", "\n")


def _credentials(service_account_json: str):
    payload = normalize_json_secret(service_account_json or "").strip()
    if not payload:
        return None  # default credential chain
    try:
        info = json.loads(payload)
        return service_account.Credentials.from_service_account_info(info)
    except (ValueError, GoogleAuthError) as e:
        raise SourceAccessError(f"invalid service account JSON: {e}") from e


def to_plain_value(value: Any) -> Any:
    """
    Convert Firestore-native values into JSON-safe Python values.
    Timestamps become RFC3339 strings, references their path, geo points a dict.
    """
    if isinstance(value, datetime):
        return format_time(value)
    if isinstance(value, firestore.DocumentReference):
        return value.path
    if isinstance(value, firestore.GeoPoint):
        return {"latitude": value.latitude, "longitude": value.longitude}
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {str(k): to_plain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain_value(v) for v in value]
    return value


class FirestoreSource:
    """Read-only view over one Firestore project."""

    def __init__(self, project_id: str, service_account_json: str = "", client=None):
        if client is None:
            try:
                client = firestore.Client(
                    project=project_id, credentials=_credentials(service_account_json)
                )
            except _SOURCE_ERRORS as e:
                raise SourceAccessError(f"failed to create firestore client: {e}") from e
        self.project_id = project_id
        self._client = client

    def __enter__(self) -> "FirestoreSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_collection(self, name: str) -> List[RawDocument]:
        """All documents of a collection, in whatever order Firestore streams them."""
        docs: List[RawDocument] = []
        try:
            for snap in self._client.collection(name).stream():
                docs.append(RawDocument(id=snap.id, fields=to_plain_value(snap.to_dict() or {})))
        except _SOURCE_ERRORS as e:
            raise SourceAccessError(f"failed to export collection {name}: {e}") from e
        log.info(f"Fetched {len(docs)} documents from '{name}'")
        return docs

    def get_document(self, collection: str, doc_id: str) -> Optional[RawDocument]:
        """Single document or None when it does not exist."""
        try:
            snap = self._client.collection(collection).document(doc_id).get()
        except NotFound:
            return None
        except _SOURCE_ERRORS as e:
            raise SourceAccessError(f"failed to export {collection}/{doc_id}: {e}") from e
        if not snap.exists:
            log.info(f"{collection}/{doc_id} not present")
            return None
        return RawDocument(id=snap.id, fields=to_plain_value(snap.to_dict() or {}))

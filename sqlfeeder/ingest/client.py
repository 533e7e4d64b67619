"""HTTP client for the bulk and health APIs of an Elasticsearch/OpenSearch cluster."""

import json
from typing import Any, Sequence

import requests

from .._logging import get_logger
from ..errors import IngestFatalError, IngestTransientError
from ..settings import IngestSettings
from .documents import Document

_TRANSIENT_STATUS = {429, 502, 503, 504}


def _build_auth_headers(settings: IngestSettings) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.token:
        headers["Authorization"] = f"Bearer {settings.token}"
    elif settings.api_key:
        headers["Authorization"] = f"ApiKey {settings.api_key}"
    return headers


def build_bulk_body(documents: Sequence[Document]) -> str:
    lines: list[str] = []
    for document in documents:
        lines.append(json.dumps(document.action(), ensure_ascii=False))
        if document.op_type != "delete":
            lines.append(json.dumps(document.source, ensure_ascii=False))
    return "\n".join(lines) + "\n"


class SearchClient:
    def __init__(self, settings: IngestSettings, session: requests.Session | None = None):
        self.settings = settings
        self.base_url = str(settings.url).rstrip("/")
        self.logger = get_logger("ingest.client")
        self.session = session or requests.Session()
        self.session.headers.update(_build_auth_headers(settings))
        if settings.username and settings.password and not (settings.token or settings.api_key):
            self.session.auth = (settings.username, settings.password)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                timeout=self.settings.timeout_seconds,
                verify=self.settings.verify_ssl,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise IngestTransientError(f"{method} {path} failed: {exc}") from exc
        except requests.RequestException as exc:
            raise IngestFatalError(f"{method} {path} failed: {exc}") from exc

        if response.status_code in _TRANSIENT_STATUS:
            raise IngestTransientError(f"{method} {path} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise IngestFatalError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:500]}"
            )
        return response

    def bulk(self, documents: Sequence[Document]) -> int:
        """Submit ``documents`` in one bulk request and return how many were acknowledged."""
        if not documents:
            return 0

        params = {"refresh": "true"} if self.settings.refresh else None
        response = self._request(
            "POST",
            "/_bulk",
            data=build_bulk_body(documents).encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
            params=params,
        )

        try:
            payload = response.json()
        except ValueError as exc:
            raise IngestFatalError(f"Bulk response is not JSON: {response.text[:200]}") from exc

        items = payload.get("items", [])
        if not payload.get("errors"):
            return len(items) or len(documents)

        results = [_item_result(item) for item in items]
        failed = [index for index, result in enumerate(results) if _item_failed(result)]
        # items answer in request order; without a full answer the whole batch is suspect
        indexes = failed if len(results) == len(documents) else None
        if failed and all(results[index].get("status") in _TRANSIENT_STATUS for index in failed):
            raise IngestTransientError(
                f"{len(failed)} of {len(items)} bulk items were rejected as busy", item_indexes=indexes
            )

        fatal = [results[index] for index in failed if results[index].get("status") not in _TRANSIENT_STATUS]
        first = fatal[0] if fatal else {}
        raise IngestFatalError(
            f"{len(failed)} of {len(items)} bulk items failed; first error: {first.get('error')}",
            item_indexes=indexes if failed else None,
        )

    def cluster_health(self) -> dict[str, Any]:
        response = self._request("GET", "/_cluster/health")
        return response.json()

    def close(self) -> None:
        self.session.close()
        self.logger.info("Closed search client for %s", self.base_url)


def _item_result(item: dict[str, Any]) -> dict[str, Any]:
    # each item is {"<op_type>": {...status, error...}}
    return next(iter(item.values()), {})


def _item_failed(result: dict[str, Any]) -> bool:
    return result.get("status", 200) >= 300 or "error" in result


def test_search_connection(settings: IngestSettings | dict, raise_on_error: bool = False) -> bool:
    logger = get_logger("ingest.client")
    try:
        ingest_settings = settings if isinstance(settings, IngestSettings) else IngestSettings.model_validate(settings)
        client = SearchClient(ingest_settings)
        try:
            health = client.cluster_health()
        finally:
            client.close()
        return health.get("status") in {"green", "yellow"}
    except Exception:
        logger.exception("Search connection test failed")
        if raise_on_error:
            raise
        return False

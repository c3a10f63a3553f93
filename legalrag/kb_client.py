"""HTTP client for the external knowledge-base service.

The KB service owns storage and the vector index; this module only speaks its
JSON API:

- ``POST /kb/search``   vector / lexical / fast-path search
- ``POST /chat``        KB-grounded answer generation
- ``GET  /kb/entries/{id}``
- ``GET  /health``

Each method sends one request per auth variant, stopping at the first that
is not rejected with 403. Retries live in ``legalrag.retry``; this layer only
classifies failures.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Sequence

import httpx
import structlog

from legalrag.auth import TokenProvider, auth_header_variants
from legalrag.errors import KnowledgeBaseResponseError, KnowledgeBaseUnavailableError
from legalrag.models import KnowledgeBaseEntry

logger = structlog.get_logger(__name__)

SearchMethod = Literal["vector", "lexical", "fast-path"]

USER_AGENT = "Civilify/1.0 KB Client"


class KnowledgeBaseClient:
    """Thin async wrapper over the KB HTTP API."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> "KnowledgeBaseClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _headers(self, auth: Dict[str, str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        headers.update(auth)
        return headers

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Send one request, moving to the next auth variant on 403.

        429 and connection failures are raised at once so the caller's retry
        policy applies; they never switch variants.
        """
        url = f"{self.base_url}{path}"
        variants = auth_header_variants(self._token_provider, self._api_key) or [("anonymous", {})]
        for index, (variant, auth) in enumerate(variants):
            try:
                response = await self._http.request(method, url, json=json_body, headers=self._headers(auth))
            except httpx.TransportError as e:
                raise KnowledgeBaseUnavailableError(f"{method} {path} failed: {e}") from e
            if response.status_code == 403 and index < len(variants) - 1:
                logger.warning("KB auth variant rejected, trying next", variant=variant, path=path)
                continue
            response.raise_for_status()
            return response

    @staticmethod
    def _json_object(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise KnowledgeBaseResponseError("KB response is not valid JSON") from e
        if not isinstance(body, dict):
            raise KnowledgeBaseResponseError(f"Unexpected KB response shape: {type(body).__name__}")
        return body

    async def search(
        self,
        query: Optional[str],
        limit: int,
        method: Optional[SearchMethod] = None,
        legal_topics: Optional[Sequence[str]] = None,
        statutes_referenced: Optional[Sequence[str]] = None,
    ) -> List[KnowledgeBaseEntry]:
        """Run one search against ``/kb/search``.

        Args:
            query: Query text (fast-path searches may omit it)
            limit: Maximum results requested
            method: vector / lexical / fast-path; omitted for the KB default
            legal_topics: Optional topic filter
            statutes_referenced: Citations for fast-path matching

        Returns:
            Parsed entries in the order the KB returned them

        Raises:
            KnowledgeBaseUnavailableError: connection-level failure
            KnowledgeBaseResponseError: malformed body or ``success: false``
            httpx.HTTPStatusError: non-2xx status (429 included)
        """
        body: Dict[str, Any] = {"limit": limit}
        if query:
            body["query"] = query
        if method:
            body["method"] = method
        if legal_topics:
            body["legal_topics"] = list(legal_topics)
        if statutes_referenced:
            body["statutes_referenced"] = list(statutes_referenced)

        response = await self._request("POST", "/kb/search", body)
        payload = self._json_object(response)

        if payload.get("success") is not True:
            raise KnowledgeBaseResponseError(f"KB search unsuccessful: {payload.get('error') or 'no error given'}")

        results = payload.get("results")
        if results is None:
            return []
        if not isinstance(results, list):
            raise KnowledgeBaseResponseError("KB search 'results' is not a list")

        entries = []
        for item in results:
            if not isinstance(item, dict):
                logger.warning("Skipping malformed KB result", item_type=type(item).__name__)
                continue
            entries.append(KnowledgeBaseEntry.from_api(item))

        logger.debug("KB search completed", method=method or "default", results=len(entries))
        return entries

    async def chat(
        self,
        question: str,
        context_entries: Sequence[KnowledgeBaseEntry],
        mode: str,
        kb_first: bool = True,
    ) -> str:
        """Ask the KB service for an answer grounded in ``context_entries``."""
        body = {
            "question": question,
            "context_entries": [entry.to_context() for entry in context_entries],
            "mode": mode,
            "kb_first": kb_first,
        }
        response = await self._request("POST", "/chat", body)
        payload = self._json_object(response)
        answer = payload.get("answer")
        if answer is None:
            return ""
        if not isinstance(answer, str):
            raise KnowledgeBaseResponseError("KB chat 'answer' is not a string")
        return answer

    async def get_entry(self, entry_id: str) -> Optional[KnowledgeBaseEntry]:
        """Fetch a single entry by id; None when the KB does not know it."""
        try:
            response = await self._request("GET", f"/kb/entries/{entry_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        payload = self._json_object(response)
        # Some deployments wrap the entry as {"success": true, "entry": {...}}
        raw = payload.get("entry") if isinstance(payload.get("entry"), dict) else payload
        return KnowledgeBaseEntry.from_api(raw)

    async def health(self) -> bool:
        """True when ``/health`` answers 2xx. Never raises."""
        try:
            await self._request("GET", "/health")
            return True
        except KnowledgeBaseUnavailableError:
            logger.warning("Knowledge base service is not available (connection refused)")
            return False
        except Exception as e:
            logger.warning("Knowledge base health check failed", error=str(e))
            return False

"""
Host Wiki API Client

Client for the MediaWiki instance that stores annotation documents and
renders annotation markup. Every request carries a short-lived service JWT.

Failures are normalized into two exceptions:
- MediaWikiRequestError  : transport failure or non-2xx status
- MediaWikiResponseError : the API answered with an `error` object
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

import httpx

from ..config import settings
from ..auth.jwt_utils import create_fa_to_mw_jwt
from ..core.errors import MediaWikiRequestError, MediaWikiResponseError

logger = logging.getLogger("fa.wiki")


class MediaWikiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url or str(settings.mw_api_base_url)
        self._client = client

    async def _request(
        self,
        params: Dict[str, Any],
        scopes: list[str] = None,
        method: str = "GET",
        acting_user: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Make an authenticated request to the host wiki API.

        Args:
            params: MediaWiki API parameters (sent as a form body for POST)
            scopes: JWT scopes for this request (defaults to ["page_read"])
            method: "GET" or "POST"
            acting_user: username an edit is made on behalf of
        """
        if scopes is None:
            scopes = ["page_read"]

        token = create_fa_to_mw_jwt(scopes, acting_user=acting_user)
        headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": settings.http_user_agent,
        }
        params = {"format": "json", "formatversion": 2, **params}

        try:
            if self._client is not None:
                resp = await self._send(self._client, method, params, headers)
            else:
                async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                    resp = await self._send(client, method, params, headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Host wiki request failed: %s", type(exc).__name__)
            raise MediaWikiRequestError(
                f"Host wiki request failed: {type(exc).__name__}"
            ) from exc

        if "error" in data:
            error = data["error"]
            raise MediaWikiResponseError(error.get("code", "unknown"), error.get("info", ""))

        return data

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        params: Dict[str, Any],
        headers: Dict[str, str],
    ) -> httpx.Response:
        if method == "POST":
            return await client.post(self.base_url, data=params, headers=headers)
        return await client.get(self.base_url, params=params, headers=headers)

    async def get_page_wikitext(self, title: str) -> str | None:
        params = {
            "action": "query",
            "prop": "revisions",
            "rvprop": "content",
            "rvslots": "main",
            "titles": title,
        }
        data = await self._request(params, scopes=["page_read"])
        if "query" not in data:
            return None
        pages = data["query"].get("pages", [])
        if not pages or "missing" in pages[0] or "invalid" in pages[0]:
            return None
        revision = pages[0]["revisions"][0]
        if "slots" in revision:
            return revision["slots"]["main"]["content"]
        return revision["content"]

    async def parse(self, text: str, title: str) -> str:
        """Render wikitext in the context of `title` and return the HTML."""
        params = {
            "action": "parse",
            "text": text,
            "title": title,
            "contentmodel": "wikitext",
            "prop": "text",
            "disablelimitreport": 1,
            "disableeditsection": 1,
            "wrapoutputclass": "",
        }
        data = await self._request(params, scopes=["page_read"], method="POST")
        return data["parse"]["text"]

    async def get_csrf_token(self, acting_user: str) -> str:
        params = {
            "action": "query",
            "meta": "tokens",
            "type": "csrf",
        }
        data = await self._request(params, scopes=["page_write"], acting_user=acting_user)
        return data["query"]["tokens"]["csrftoken"]

    async def edit_page(
        self,
        title: str,
        text: str,
        summary: str,
        acting_user: str,
    ) -> Dict[str, Any]:
        """Replace the full text of `title`. Returns the API `edit` result."""
        csrf = await self.get_csrf_token(acting_user)
        params = {
            "action": "edit",
            "title": title,
            "text": text,
            "summary": summary,
            "contentmodel": "json",
            "token": csrf,
        }
        data = await self._request(
            params,
            scopes=["page_write"],
            method="POST",
            acting_user=acting_user,
        )
        result = data.get("edit", {})
        if result.get("result") != "Success":
            raise MediaWikiResponseError("editfailed", str(result))
        logger.info("Saved %s (rev %s)", title, result.get("newrevid"))
        return result

"""
Microsoft Graph mail client.

Polls one shared mailbox with the delta query API using the OAuth2 client
credentials flow (app-only).
"""

import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ..core.errors import IntegrationError, NotConfiguredError
from ..core.logging import get_logger
from ..core.settings import settings

logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_ENDPOINT = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MESSAGE_FIELDS = (
    "id,conversationId,subject,bodyPreview,body,from,toRecipients,"
    "ccRecipients,replyTo,hasAttachments,receivedDateTime,isRead"
)
TOKEN_EXPIRY_BUFFER_SECONDS = 300


class GraphMailClient:
    """Client for the CRM mailbox."""

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        mailbox: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tenant_id = tenant_id if tenant_id is not None else settings.AZURE_TENANT_ID
        self.client_id = client_id if client_id is not None else settings.AZURE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.AZURE_CLIENT_SECRET
        self.mailbox = (mailbox or settings.GRAPH_MAILBOX).lower()
        self.transport = transport
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.GRAPH_TIMEOUT_SECONDS, transport=self.transport)

    def _require_configuration(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError(
                "Microsoft Graph not configured. Set AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET."
            )

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        """Cached app token, refreshed five minutes before it expires."""
        self._require_configuration()
        if self._token and self._token_expires_at > time.time() + TOKEN_EXPIRY_BUFFER_SECONDS:
            return self._token

        try:
            response = await client.post(
                TOKEN_ENDPOINT.format(tenant=self.tenant_id),
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": GRAPH_SCOPE,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.HTTPError as e:
            logger.error("Graph token request failed", error=str(e))
            raise IntegrationError(f"Graph auth request failed: {e}") from e

        if response.status_code != 200:
            logger.error("Graph token request failed", status=response.status_code, body=response.text[:500])
            raise IntegrationError(f"Graph auth failed: {response.status_code}")

        try:
            data = response.json()
            token = data["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Graph token response invalid", body=response.text[:500])
            raise IntegrationError("Graph auth failed: invalid token response") from e

        self._token = token
        self._token_expires_at = time.time() + int(data.get("expires_in", 3600))
        logger.info("Graph access token acquired", expires_in=data.get("expires_in"))
        return self._token

    async def _get(self, client: httpx.AsyncClient, url: str) -> Dict[str, Any]:
        token = await self.get_access_token(client)
        try:
            response = await client.get(
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Prefer": 'outlook.body-content-type="html"',
                },
            )
        except httpx.HTTPError as e:
            logger.error("Graph request failed", url=url, error=str(e))
            raise IntegrationError(f"Graph request failed: {e}") from e

        if response.status_code != 200:
            logger.error("Graph API request failed", url=url, status=response.status_code, body=response.text[:500])
            raise IntegrationError(f"Graph API error: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationError("Graph API returned invalid JSON") from e

    def initial_delta_url(self) -> str:
        return (
            f"{GRAPH_BASE_URL}/users/{quote(self.mailbox)}/mailFolders/inbox/messages/delta"
            f"?$select={MESSAGE_FIELDS}&$top={settings.GRAPH_MAX_MESSAGES_PER_POLL}"
        )

    async def poll_inbox(self, delta_link: Optional[str] = None) -> Dict[str, Any]:
        """One delta page: from the saved delta link, or a fresh initial sync."""
        self._require_configuration()
        async with self._client() as client:
            result = await self._get(client, delta_link or self.initial_delta_url())

        logger.info(
            "Graph inbox polled",
            mailbox=self.mailbox,
            messages=len(result.get("value", [])),
            has_delta_link="@odata.deltaLink" in result,
            has_next_link="@odata.nextLink" in result,
        )
        return result

    async def poll_inbox_full(
        self, delta_link: Optional[str] = None, max_pages: Optional[int] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Follow next links until the delta link is reached.

        Returns the messages and the new delta link, which is None when the
        page cap stopped the walk early.
        """
        max_pages = max_pages or settings.GRAPH_MAX_PAGES_PER_SYNC
        messages: List[Dict[str, Any]] = []
        new_delta_link = None
        current = delta_link

        for _ in range(max_pages):
            page = await self.poll_inbox(current)
            messages.extend(page.get("value", []))

            if page.get("@odata.deltaLink"):
                new_delta_link = page["@odata.deltaLink"]
                break
            current = page.get("@odata.nextLink")
            if not current:
                break

        return messages, new_delta_link

    async def test_connection(self) -> Dict[str, Any]:
        if not self.is_configured:
            return {"success": False, "mailbox": self.mailbox, "error": "Microsoft Graph not configured"}

        url = f"{GRAPH_BASE_URL}/users/{quote(self.mailbox)}/mailFolders/inbox?$select=displayName,totalItemCount,unreadItemCount"
        try:
            async with self._client() as client:
                data = await self._get(client, url)
        except IntegrationError as e:
            return {"success": False, "mailbox": self.mailbox, "error": e.message}

        logger.info(
            "Graph connection test passed",
            mailbox=self.mailbox,
            total_items=data.get("totalItemCount"),
            unread_items=data.get("unreadItemCount"),
        )
        return {
            "success": True,
            "mailbox": self.mailbox,
            "total_items": data.get("totalItemCount"),
            "unread_items": data.get("unreadItemCount"),
        }


_client: Optional[GraphMailClient] = None


def get_graph_client() -> GraphMailClient:
    """Process wide client so the app token is reused between syncs."""
    global _client
    if _client is None:
        _client = GraphMailClient()
    return _client

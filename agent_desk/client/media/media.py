import logging
from typing import List, Optional

import httpx

from agent_desk.model.channel.channel import MediaType, Message

logger = logging.getLogger(__name__)


class MediaClient:
    """REST side of the chat backend: media upload and message history."""

    def __init__(self, base_url: str, token: str = "", timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def upload(
        self,
        protocol_id: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        caption: str = "",
    ) -> Optional[str]:
        """Upload one attachment; return its media url or None on failure."""
        media_type = MediaType.from_content_type(content_type)
        try:
            response = await self._client.post(
                f"{self._base_url}/whatsapp/sendMediaFile/{protocol_id}",
                files={"attachment": (filename, content, content_type or "application/octet-stream")},
                data={"caption": caption, "mediatype": media_type.value},
            )
        except httpx.RequestError:
            logger.exception("media upload failed protocol_id=%s", protocol_id)
            return None
        if response.status_code >= 400:
            logger.warning("media upload rejected status=%s body=%s", response.status_code, response.text)
            return None
        return response.json().get("mediaUrl")

    async def fetch_history(self, channel_id: str) -> List[Message]:
        try:
            response = await self._client.get(f"{self._base_url}/chat/history/{channel_id}")
        except httpx.RequestError:
            logger.exception("history request failed channel_id=%s", channel_id)
            return []
        if response.status_code != 200:
            logger.warning("history request rejected status=%s", response.status_code)
            return []

        messages: List[Message] = []
        for raw in response.json().get("messages", []):
            if not isinstance(raw, dict):
                continue
            try:
                messages.append(
                    Message(
                        sender=raw.get("sender"),
                        text=raw.get("text") or raw.get("mensagem") or "",
                        sender_name=raw.get("senderName") or raw.get("nome"),
                        media_url=raw.get("mediaUrl"),
                        media_type=raw.get("mediaType"),
                        file_name=raw.get("fileName"),
                    )
                )
            except ValueError:
                logger.warning("skipping malformed history entry channel_id=%s", channel_id)
        return messages

    async def aclose(self) -> None:
        await self._client.aclose()

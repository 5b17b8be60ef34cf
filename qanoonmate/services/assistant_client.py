"""Client for the legal assistant inference service"""
import httpx
import logging
from typing import Any, Dict, Iterator, List, Optional

from ..config import settings
from ..exceptions import AssistantError
from ..utils.retry import retry_async

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are QanoonMate, a legal information assistant for Pakistani law. "
    "Give clear, general legal information, cite the relevant law where possible "
    "and recommend consulting a lawyer for advice on specific cases."
)
HISTORY_LIMIT = 20


def iter_chunks(text: str, size: int) -> Iterator[str]:
    """Split a reply into chunks of at most `size` characters for streaming."""
    size = max(1, size)
    for start in range(0, len(text), size):
        yield text[start:start + size]


def build_messages(history: List[Dict[str, str]], attachments: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, str]]:
    """
    Build the prompt for the assistant.

    Args:
        history: stored messages as {"sender": "user"|"assistant", "content": str}, oldest first
        attachments: attachment metadata of the latest user message

    Returns:
        chat-completion style message list
    """
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    for item in history[-HISTORY_LIMIT:]:
        role = "assistant" if item["sender"] == "assistant" else "user"
        messages.append({"role": role, "content": item["content"]})
    if attachments:
        names = ", ".join(a.get("name") or "file" for a in attachments)
        messages.append({"role": "user", "content": f"(Attached files: {names})"})
    return messages


class AssistantClient:
    """Async client for the assistant inference API"""

    def __init__(self):
        self.base_url = settings.ASSISTANT_API_URL.rstrip("/")
        self.api_key = settings.ASSISTANT_API_KEY
        self.timeout = settings.ASSISTANT_TIMEOUT

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.base_url, headers=headers, json=payload)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    f"Assistant API error: {exc} | status={exc.response.status_code} | body={exc.response.text[:500]}"
                )
                raise
            return response.json()

    async def complete(self, messages: List[Dict[str, str]], session_id: Optional[str] = None) -> str:
        """
        Ask the assistant for a reply.

        Raises:
            AssistantError: the service is not configured, unreachable or returned no text
        """
        if not self.configured:
            raise AssistantError("Assistant service is not configured")

        payload = {"messages": messages, "session_id": session_id}
        try:
            data = await retry_async(
                lambda: self._post(payload),
                max_attempts=2,
                delay=0.5,
                exceptions=(httpx.TransportError, httpx.HTTPStatusError),
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise AssistantError("Assistant service request failed", {"error": str(exc)})

        reply = data.get("reply") or data.get("content") or data.get("answer")
        if not reply:
            raise AssistantError("Assistant returned an empty reply", {"response": data})
        return reply

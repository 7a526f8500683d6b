"""
Telegram Bot API transport — outbound messages and approval cards.
Inbound updates are handled elsewhere; callback data is "approve:<action_id>" / "reject:<action_id>".
"""

import logging
from typing import Optional, Union
import httpx

from adsteward.errors import UpstreamError
from adsteward.utils import truncate

logger = logging.getLogger(__name__)

MESSAGE_LIMIT = 4096

ChatId = Union[int, str]


class TelegramClient:

    def __init__(self, token: str, base_url: str = "https://api.telegram.org",
                 http: Optional[httpx.AsyncClient] = None):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=30.0)

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, payload: dict) -> dict:
        try:
            response = await self._http.post(f"{self.base_url}/bot{self.token}/{method}", json=payload)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram {method} failed: {e}")
            raise UpstreamError("telegram", f"{method} failed: {e}")
        if not body.get("ok"):
            raise UpstreamError("telegram", f"{method}: {body.get('description')}", status_code=response.status_code)
        return body.get("result") or {}

    async def send_message(self, chat_id: ChatId, text: str, parse_mode: Optional[str] = None,
                           reply_markup: Optional[dict] = None) -> Optional[int]:
        """Send a message; returns the Telegram message id."""
        payload = {
            "chat_id": chat_id,
            "text": truncate(text, MESSAGE_LIMIT),
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        result = await self._request("sendMessage", payload)
        return result.get("message_id")

    async def send_action_confirmation(self, chat_id: ChatId, action_id: str, text: str) -> Optional[int]:
        """Approval card with approve / reject buttons bound to the action id."""
        keyboard = {
            "inline_keyboard": [[
                {"text": "✅ Approve", "callback_data": f"approve:{action_id}"},
                {"text": "❌ Reject", "callback_data": f"reject:{action_id}"},
            ]]
        }
        return await self.send_message(chat_id, text, reply_markup=keyboard)

from __future__ import annotations

import aiohttp
from typing import Dict, Iterable, List, Optional, Set
import logging

log = logging.getLogger("telegram")


def _is_not_modified(status: int, body: str) -> bool:
    return status == 400 and "message is not modified" in (body or "").lower()


class TelegramNotifier:
    """sendMessage / editMessageText fan-out; one message handle per chat."""

    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        parse_mode: str = "HTML",
        disable_web_page_preview: bool = True,
        timeout_s: int = 15,
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.parse_mode = "MarkdownV2" if (parse_mode or "").upper() == "MARKDOWNV2" else "HTML"
        self.disable_web_page_preview = disable_web_page_preview
        self.timeout_s = timeout_s

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    def _url(self, method: str) -> str:
        return f"https://api.telegram.org/bot{self.token}/{method}"

    def _payload(self, chat_id: str, text: str) -> dict:
        return {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": self.disable_web_page_preview,
        }

    async def _post(self, sess: aiohttp.ClientSession, method: str, payload: dict) -> Optional[dict]:
        chat_id = payload.get("chat_id")
        try:
            async with sess.post(self._url(method), json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    if _is_not_modified(resp.status, body):
                        # edit already applied; same text
                        return {"ok": True, "result": {}}
                    log.warning("telegram_%s_failed chat_id=%s status=%s body=%s", method, chat_id, resp.status, body[:2000])
                    return None
                return await resp.json(content_type=None)
        except Exception as e:
            log.exception("telegram_%s_exception chat_id=%s err=%s", method, chat_id, e)
            return None

    async def create_message(self, text: str, chat_ids: Optional[Iterable[str]] = None) -> Dict[str, int]:
        """Send ``text`` to every chat (or only ``chat_ids``). Returns chat_id -> message_id for successful sends."""
        handles: Dict[str, int] = {}
        if not self.enabled():
            return handles
        targets = self.chat_ids if chat_ids is None else [str(c) for c in chat_ids]
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            for chat_id in targets:
                data = await self._post(sess, "sendMessage", self._payload(chat_id, text))
                message_id = ((data or {}).get("result") or {}).get("message_id")
                if message_id is not None:
                    handles[chat_id] = int(message_id)
        return handles

    async def update_message(self, handles: Dict[str, int], text: str) -> Set[str]:
        """Edit the message in every chat that has a handle. Returns the chats whose edit failed."""
        if not self.enabled():
            return set(handles)
        failed: Set[str] = set()
        if not handles:
            return failed
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            for chat_id, message_id in handles.items():
                payload = self._payload(chat_id, text)
                payload["message_id"] = message_id
                data = await self._post(sess, "editMessageText", payload)
                if data is None:
                    failed.add(chat_id)
        return failed

"""
宿主可调用的动作（非 Webhook 触发）

目前只有 read: 拉取群组或线程的最近消息，按时间正序渲染为文本。
失败时返回 is_error=True 的结果而不是抛出异常，由宿主展示给用户。
"""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from channel_talk_protocol import PersonType, format_timestamp

from ..models import ChannelTalkConfig, Credentials
from .api_client import ChannelTalkClient
from .errors import ChannelTalkError

logger = logging.getLogger("channel-talk")

DEFAULT_READ_LIMIT = 20

ClientFactory = Callable[[Credentials, Optional[str]], ChannelTalkClient]


@dataclass
class ActionResult:
    text: str
    is_error: bool = False

    def to_dict(self) -> dict:
        return {
            "isError": self.is_error,
            "content": [{"type": "text", "text": self.text}],
        }


def format_history_line(message: Mapping) -> str:
    if message.get("personType") == PersonType.BOT.value:
        sender = "🤖 Bot"
    else:
        sender = f"👤 {message.get('personId') or 'Unknown'}"
    created_at = message.get("createdAt")
    ts = format_timestamp(created_at) if isinstance(created_at, (int, float)) else ""
    thread = " [thread]" if message.get("threadMsg") else ""
    return f"[{ts}] {sender}{thread}: {message.get('plainText') or ''}"


def format_history(messages: list) -> str:
    """API 按时间倒序返回，这里翻转为正序后逐行渲染"""
    lines = [format_history_line(m) for m in reversed(messages) if isinstance(m, Mapping)]
    return "\n".join(lines)


async def read_messages(
    config: ChannelTalkConfig,
    params: Mapping,
    client_factory: ClientFactory = ChannelTalkClient,
) -> ActionResult:
    """
    read 动作。

    Args:
        config: 当前账号配置
        params: {"target" | "to": 群组 ID, "limit": 条数, "threadId": 线程根消息 ID}
    """
    credentials = config.credentials()
    if credentials is None:
        return ActionResult("Channel Talk credentials not configured.", is_error=True)

    target = str(params.get("target") or params.get("to") or "")
    if not target:
        return ActionResult("Target (group chatId) is required for read action.", is_error=True)

    limit = params.get("limit")
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        limit = DEFAULT_READ_LIMIT
    thread_id = str(params.get("threadId") or "")

    client = client_factory(credentials, config.base_url)
    try:
        if thread_id:
            data = await client.get_thread_messages(target, thread_id, limit=limit)
        else:
            data = await client.get_messages(target, limit=limit)
    except ChannelTalkError as e:
        logger.warning("读取群组 %s 消息失败: %s", target, e)
        return ActionResult(f"Failed to read messages: {e}", is_error=True)

    messages = data.get("messages")
    formatted = format_history(messages if isinstance(messages, list) else [])
    return ActionResult(formatted or "No messages found.")

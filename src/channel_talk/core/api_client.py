"""
Channel Talk Open API v5 HTTP 客户端

负责:
    - 鉴权: 每个请求携带 x-access-key / x-access-secret
    - 发送: 向团队聊天群组发送消息（纯文本 + 可选消息块 / 选项）
    - 读取: 拉取群组 / 线程的历史消息
    - 重试: 429 / 5xx / 传输层失败按固定间隔重试，401/403 立即失败

重试流程（每次请求最多 3 次尝试）:
    Attempt(1) ─成功→ 返回
               ─可重试→ sleep 1s → Attempt(2) ─可重试→ sleep 3s → Attempt(3) ─可重试→ 耗尽
               ─致命→ 立即抛出
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Union
from urllib.parse import quote

import aiohttp

from channel_talk_protocol import (
    BulletsBlock,
    CodeBlock,
    MessageOption,
    OutboundMessage,
    SendResult,
    TextBlock,
    block_from_dict,
)

from ..models import DEFAULT_BASE_URL, Credentials
from .errors import (
    AuthError,
    ChannelTalkError,
    NetworkError,
    ProviderError,
    RateLimitExhausted,
    ValidationError,
)

logger = logging.getLogger("channel-talk")

# 两次重试之间的固定等待秒数，不做指数放大、不加抖动
RETRY_DELAYS: tuple[float, ...] = (1.0, 3.0)
MAX_ATTEMPTS = len(RETRY_DELAYS) + 1

# 单次请求超时秒数
REQUEST_TIMEOUT = 30

Sleeper = Callable[[float], Awaitable[None]]


# -------- 单次尝试的结果 --------


@dataclass
class Success:
    status: int
    data: dict


@dataclass
class RetryableFailure:
    error: ChannelTalkError


@dataclass
class FatalFailure:
    error: ChannelTalkError


AttemptOutcome = Union[Success, RetryableFailure, FatalFailure]


def classify_response(status: int, text: str) -> AttemptOutcome:
    """根据 HTTP 状态码和响应体判定本次尝试的结果"""
    if status in (401, 403):
        return FatalFailure(AuthError(status, text))
    if 200 <= status < 300:
        try:
            data = json.loads(text) if text else {}
        except json.JSONDecodeError:
            return FatalFailure(ProviderError(status, text))
        if not isinstance(data, dict):
            return FatalFailure(ProviderError(status, text))
        return Success(status, data)
    if status == 429 or status >= 500:
        return RetryableFailure(ProviderError(status, text))
    return FatalFailure(ProviderError(status, text))


def extract_message_id(data: dict) -> str:
    """响应结构因消息类型而异: 优先 message.id，其次顶层 id，都没有则为空串"""
    message = data.get("message")
    if isinstance(message, dict) and message.get("id") is not None:
        return str(message["id"])
    if data.get("id") is not None:
        return str(data["id"])
    return ""


# -------- 出站消息校验 --------


def serialize_block(block) -> dict:
    """消息块 → JSON，未知类型抛出 ValidationError"""
    if isinstance(block, dict):
        try:
            block = block_from_dict(block)
        except ValueError as e:
            raise ValidationError(str(e)) from e
    if isinstance(block, BulletsBlock):
        if not all(isinstance(item, TextBlock) for item in block.blocks):
            raise ValidationError("bullets 块只能包含 text 块")
        return block.to_dict()
    if isinstance(block, (TextBlock, CodeBlock)):
        return block.to_dict()
    raise ValidationError(f"不支持的消息块: {block!r}")


def serialize_option(option) -> str:
    try:
        return MessageOption(option).value
    except ValueError as e:
        raise ValidationError(f"未知的消息选项: {option!r}") from e


def build_message_body(message: OutboundMessage) -> dict:
    """构建请求体: plainText 必有，blocks / options 仅在非空时出现"""
    if not message.group_id:
        raise ValidationError("group_id 不能为空")
    if not isinstance(message.plain_text, str):
        raise ValidationError("plain_text 必须是字符串")

    body: dict = {"plainText": message.plain_text}
    blocks = [serialize_block(b) for b in message.blocks or []]
    options = [serialize_option(o) for o in message.options or []]
    if blocks:
        body["blocks"] = blocks
    if options:
        body["options"] = options
    return body


class ChannelTalkClient:
    """
    Channel Talk API 客户端

    不持有任何可变的共享状态，可以对不同消息并发调用 send_message。
    传入 session 时复用该会话（由调用方负责关闭），否则每次请求临时创建。
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: Optional[str] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Sleeper = asyncio.sleep,
        timeout: float = REQUEST_TIMEOUT,
    ):
        """
        Args:
            credentials: API 凭据
            base_url:    API 地址，默认 https://api.channel.io
            session:     可复用的 aiohttp 会话
            sleep:       重试等待函数（测试时可替换）
            timeout:     单次请求超时秒数
        """
        self.credentials = credentials
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._session = session
        self._sleep = sleep
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    # -------- HTTP 会话 --------

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None and not self._session.closed:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-access-key": self.credentials.access_key,
            "x-access-secret": self.credentials.access_secret,
        }

    # -------- 重试状态机 --------

    async def _attempt(
        self,
        method: str,
        path: str,
        params: Optional[dict],
        body: Optional[dict],
    ) -> AttemptOutcome:
        """执行一次 HTTP 请求，只返回结果，不抛出"""
        try:
            async with self._session_scope() as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=body,
                    headers=self._headers(),
                    timeout=self._timeout,
                ) as resp:
                    status = resp.status
                    text = await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return RetryableFailure(NetworkError(f"{method} {path} 请求失败: {e!r}"))

        logger.debug("%s %s → %s %s", method, path, status, text[:200])
        return classify_response(status, text)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> dict:
        """带重试的 API 调用，返回解析后的 JSON 对象"""
        last_error: Optional[ChannelTalkError] = None
        for attempt in range(MAX_ATTEMPTS):
            outcome = await self._attempt(method, path, params, body)
            if isinstance(outcome, Success):
                return outcome.data
            if isinstance(outcome, FatalFailure):
                raise outcome.error

            last_error = outcome.error
            if attempt < len(RETRY_DELAYS):
                delay = RETRY_DELAYS[attempt]
                logger.warning(
                    "%s %s 第 %d 次尝试失败 (%s), %.1f 秒后重试",
                    method, path, attempt + 1, last_error, delay,
                )
                await self._sleep(delay)

        logger.error("%s %s 重试 %d 次后仍失败: %s", method, path, MAX_ATTEMPTS - 1, last_error)
        if isinstance(last_error, ProviderError):
            raise RateLimitExhausted(last_error.status, last_error.body) from last_error
        raise last_error

    # -------- 发送消息 --------

    async def send_message(self, message: OutboundMessage) -> SendResult:
        """
        发送消息到团队聊天群组。

        Raises:
            ValidationError:    消息格式不合法（不会发出请求）
            AuthError:          401/403，不重试
            ProviderError:      其他 4xx，不重试
            RateLimitExhausted: 429/5xx 重试耗尽
            NetworkError:       传输层失败重试耗尽
        """
        body = build_message_body(message)
        params = {"botName": message.bot_name} if message.bot_name else None
        path = f"/open/v5/groups/{quote(message.group_id, safe='')}/messages"

        data = await self.request("POST", path, params=params, body=body)
        message_obj = data.get("message")
        return SendResult(
            message_id=extract_message_id(data),
            group_id=message.group_id,
            message=message_obj if isinstance(message_obj, dict) else None,
        )

    # -------- 读取消息 --------

    async def get_messages(
        self, group_id: str, *, limit: int = 20, sort_order: str = "desc"
    ) -> dict:
        """拉取群组消息，返回 {"messages": [...], ...}"""
        return await self.request(
            "GET",
            f"/open/v5/groups/{quote(group_id, safe='')}/messages",
            params={"limit": str(limit), "sortOrder": sort_order},
        )

    async def get_thread_messages(
        self,
        group_id: str,
        root_message_id: str,
        *,
        limit: int = 20,
        sort_order: str = "desc",
    ) -> dict:
        """拉取某条根消息下的线程回复"""
        return await self.request(
            "GET",
            f"/open/v5/groups/{quote(group_id, safe='')}"
            f"/messages/{quote(root_message_id, safe='')}/thread",
            params={"limit": str(limit), "sortOrder": sort_order},
        )


async def send_message(
    credentials: Credentials,
    message: OutboundMessage,
    base_url: Optional[str] = None,
) -> SendResult:
    """便捷函数：临时创建客户端并发送一条消息"""
    return await ChannelTalkClient(credentials, base_url).send_message(message)

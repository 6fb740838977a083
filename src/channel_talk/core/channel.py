"""
Channel Talk 通道门面

宿主通过 ChannelTalkChannel 使用整个桥接服务:
    - 配置: resolve_account / is_configured / collect_warnings
    - 出站: send / send_text
    - 动作: list_actions / handle_action
    - 网关: start_account（阻塞运行 Webhook，直到 abort）
    - 状态: account_snapshot / channel_summary / probe
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Mapping, Optional

from channel_talk_protocol import InboundMessage, OutboundMessage, SendResult

from ..models import DEFAULT_ACCOUNT_ID, ChannelTalkConfig, collect_warnings
from .actions import ActionResult, read_messages
from .api_client import ChannelTalkClient
from .errors import AuthError, NotConfiguredError
from .status import (
    AccountRuntimeStatus,
    StatusListener,
    StatusStore,
    build_account_snapshot,
    build_channel_summary,
    probe_account,
)
from .webhook import InboundCallback, WebhookReceiver

logger = logging.getLogger("channel-talk")


class ChannelTalkChannel:
    """单账号 Channel Talk 通道"""

    id = "channel-talk"
    meta = {
        "id": "channel-talk",
        "label": "Channel Talk",
        "selectionLabel": "Channel Talk (채널톡)",
        "docsPath": "/channels/channel-talk",
        "blurb": "채널톡 Team Chat integration",
        "aliases": ["channeltalk", "채널톡"],
    }
    capabilities = {
        "chatTypes": ["channel"],
        "polls": False,
        "threads": False,
        "media": False,
    }

    def __init__(
        self,
        resolve_config: Callable[[], ChannelTalkConfig],
        *,
        account_id: str = DEFAULT_ACCOUNT_ID,
        on_status: Optional[StatusListener] = None,
    ):
        """
        Args:
            resolve_config: 配置解析函数，每次使用时调用以拿到最新凭据
            account_id:     账号 ID
            on_status:      状态变化回调（宿主侧的 setStatus）
        """
        self.resolve_config = resolve_config
        self.account_id = account_id
        self._status = StatusStore(account_id, on_status)
        self.receiver: Optional[WebhookReceiver] = None

    # -------- 配置 --------

    def resolve_account(self) -> ChannelTalkConfig:
        return self.resolve_config()

    def is_configured(self) -> bool:
        return self.resolve_config().credentials() is not None

    def collect_warnings(self) -> list[str]:
        return collect_warnings(self.resolve_config())

    def _client(self, config: ChannelTalkConfig) -> ChannelTalkClient:
        credentials = config.credentials()
        if credentials is None:
            raise NotConfiguredError("Channel Talk credentials not configured.")
        return ChannelTalkClient(credentials, config.base_url)

    # -------- 出站 --------

    async def send(self, message: OutboundMessage) -> SendResult:
        """
        发送消息。未指定 bot_name 时使用配置中的 botName。

        401/403 除抛给调用方外，还会记录到账号的 last_error。
        """
        config = self.resolve_config()
        if not config.enabled:
            raise NotConfiguredError("Channel Talk account is disabled.")
        client = self._client(config)
        if message.bot_name is None and config.bot_name:
            message = replace(message, bot_name=config.bot_name)
        try:
            result = await client.send_message(message)
        except AuthError as e:
            self._status.update(last_error=str(e))
            raise
        logger.info("消息已发送到群组 %s: %s", result.group_id, result.message_id)
        return result

    async def send_text(
        self, group_id: str, text: str, *, root_message_id: Optional[str] = None
    ) -> SendResult:
        return await self.send(OutboundMessage(
            group_id=group_id,
            plain_text=text,
            root_message_id=root_message_id,
        ))

    async def _reply(self, message: InboundMessage, content: str):
        await self.send_text(message.chat_id, content, root_message_id=message.thread_id)

    # -------- 动作 --------

    def list_actions(self) -> list[str]:
        return ["read"] if self.is_configured() else []

    async def handle_action(self, action: str, params: Mapping) -> Optional[ActionResult]:
        """不认识的动作返回 None"""
        if action == "read":
            return await read_messages(self.resolve_config(), params)
        return None

    # -------- 网关 --------

    async def start_account(
        self,
        on_message: InboundCallback,
        abort: Optional[asyncio.Event] = None,
    ) -> AccountRuntimeStatus:
        """
        启动 Webhook 并阻塞到 abort 触发。

        账号未启用或缺少凭据时不监听，直接返回当前状态。
        """
        config = self.resolve_config()
        if not config.enabled or config.credentials() is None:
            logger.warning("Channel Talk 账号 %s 未启用或未配置凭据, 不启动 Webhook", self.account_id)
            return self._status.current

        logger.info("starting channel-talk webhook (port %d)", config.webhook.port)
        self.receiver = WebhookReceiver(
            self.resolve_config,
            on_message,
            account_id=self.account_id,
            reply=self._reply,
            status=self._status,
        )
        return await self.receiver.run(abort)

    # -------- 状态 --------

    @property
    def runtime(self) -> AccountRuntimeStatus:
        return self._status.current

    def account_snapshot(self) -> dict:
        return build_account_snapshot(self.resolve_config(), self._status.current)

    def channel_summary(self) -> dict:
        return build_channel_summary(self.account_snapshot())

    def probe(self) -> dict:
        return probe_account(self.resolve_config())

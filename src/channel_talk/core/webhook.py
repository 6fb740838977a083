"""
Channel Talk Webhook 接收端

负责:
    - 监听: 在 webhook.port / webhook.path 上接收 Channel Talk 推送
    - 解析: JSON → InboundEvent，不合法直接 400
    - 归一化: 只保留群聊消息，过滤 Bot 自身消息，按消息 ID 去重
    - 分发: 请求处理器只入队并立即返回 200，消费任务执行准入过滤后
            在独立任务中调用宿主回调，回调慢不会拖住 Webhook 确认

生命周期:
    stopped → starting → running → stopping → stopped
    绑定端口失败或消费任务异常退出 → failed（不自动重启，由宿主重新调用）
"""

import asyncio
import json
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Optional

from aiohttp import web

from channel_talk_protocol import (
    ChatType,
    InboundEvent,
    InboundMessage,
    MessageResponse,
    PersonType,
    format_timestamp,
)

from ..models import DEFAULT_ACCOUNT_ID, ChannelTalkConfig
from .errors import ListenerError
from .policy import decide
from .status import AccountRuntimeStatus, ReceiverState, StatusStore, utcnow

logger = logging.getLogger("channel-talk")

# 消息去重缓存容量，超出后按 FIFO 淘汰
MSG_DEDUP_CACHE_SIZE = 1000

ConfigResolver = Callable[[], ChannelTalkConfig]
InboundCallback = Callable[[InboundMessage], Awaitable[Optional[MessageResponse]]]
ReplyCallback = Callable[[InboundMessage, str], Awaitable[None]]


def normalize_event(config: ChannelTalkConfig, event: InboundEvent) -> Optional[InboundMessage]:
    """
    将 Webhook 事件转换为交给宿主的标准化消息，不属于本通道的事件返回 None。

    Bot 自身消息的判断: 配置了 botPersonId 时按 personId 精确匹配，
    否则保守地丢弃所有 personType == bot 的消息，防止自问自答。
    """
    entity = event.entity
    if entity.chat_type != ChatType.GROUP.value:
        return None

    if config.bot_person_id:
        if entity.person_id == config.bot_person_id:
            return None
    elif entity.person_type == PersonType.BOT.value:
        return None

    if not entity.chat_id:
        return None

    if entity.thread_msg:
        thread_id = entity.root_message_id or entity.thread_key
    else:
        thread_id = None

    sender = (event.manager.name if event.manager else None) or entity.person_id or "Unknown"
    timestamp = format_timestamp(entity.created_at) or format_timestamp(
        utcnow().timestamp() * 1000
    )
    return InboundMessage(
        sender=sender,
        text=entity.text,
        chat_id=entity.chat_id,
        thread_id=thread_id,
        timestamp=timestamp,
        message_id=entity.id,
        person_id=entity.person_id,
        person_type=entity.person_type,
        raw=event.raw,
    )


class WebhookReceiver:
    """单个账号的 Webhook 监听器"""

    def __init__(
        self,
        resolve_config: ConfigResolver,
        on_message: InboundCallback,
        *,
        account_id: str = DEFAULT_ACCOUNT_ID,
        reply: Optional[ReplyCallback] = None,
        status: Optional[StatusStore] = None,
    ):
        """
        Args:
            resolve_config: 每次调用返回最新配置（不缓存凭据）
            on_message:     宿主回调，每条通过过滤的消息调用一次
            account_id:     账号 ID
            reply:          回调返回 content 时用于回复到群组
            status:         运行状态存储，不传则新建
        """
        self.resolve_config = resolve_config
        self.on_message = on_message
        self.reply = reply
        self.account_id = account_id
        self._status = status or StatusStore(account_id)

        self._queue: Optional[asyncio.Queue] = None
        self._tasks: set[asyncio.Task] = set()
        self._seen_msgs: OrderedDict[str, None] = OrderedDict()

    @property
    def status(self) -> AccountRuntimeStatus:
        return self._status.current

    # -------- 请求处理 --------

    def create_app(self, path: str) -> web.Application:
        app = web.Application()
        app.router.add_post(path, self._handle_webhook)
        return app

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """POST {path}: 校验后立即确认，实际处理放入队列"""
        try:
            data = json.loads(await request.text())
            event = InboundEvent.from_dict(data)
        except ValueError as e:
            logger.warning("Webhook 载荷不合法: %s", e)
            return web.json_response({"ok": False, "error": str(e)}, status=400)

        try:
            self._enqueue(event)
        except Exception:
            logger.exception("处理 Webhook 事件 %s 时出错", event.entity.id)
        return web.json_response({"ok": True})

    def _enqueue(self, event: InboundEvent):
        config = self.resolve_config()
        if not config.enabled or config.credentials() is None:
            logger.debug("账号未启用或未配置凭据, 丢弃事件 %s", event.entity.id)
            return

        message = normalize_event(config, event)
        if message is None:
            logger.debug(
                "非本通道事件 %s (chatType=%s, personType=%s), 跳过",
                event.entity.id, event.entity.chat_type, event.entity.person_type,
            )
            return

        if self._queue is None:
            logger.warning("接收端未运行, 丢弃消息 %s", message.message_id)
            return

        if not self._mark_seen(message.message_id):
            logger.debug("消息 %s 已处理过, 跳过", message.message_id)
            return
        self._queue.put_nowait((event, message))

    def _mark_seen(self, msg_id: str) -> bool:
        """标记消息已处理。返回 True 表示首次处理，False 表示重复消息"""
        if not msg_id:
            return True
        if msg_id in self._seen_msgs:
            return False
        self._seen_msgs[msg_id] = None
        while len(self._seen_msgs) > MSG_DEDUP_CACHE_SIZE:
            self._seen_msgs.popitem(last=False)
        return True

    # -------- 消费与回调 --------

    def _spawn_task(self, coro) -> asyncio.Task:
        """创建后台任务并自动管理生命周期"""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _consume(self, queue: asyncio.Queue):
        """从队列取出事件，执行准入过滤，通过的交给宿主"""
        while True:
            event, message = await queue.get()
            try:
                config = self.resolve_config()
                decision = decide(config, event)
                if decision.accepted:
                    logger.info("收到消息 [%s] %s: %s",
                                message.chat_id, message.sender, message.text[:100])
                    self._spawn_task(self._handle_and_reply(message, config.callback_timeout))
                else:
                    logger.info("消息 %s 被拒绝: %s", message.message_id, decision.reason.value)
            except Exception:
                logger.exception("分发消息 %s 时出错", message.message_id)
            finally:
                queue.task_done()

    async def _handle_and_reply(self, message: InboundMessage, timeout: float):
        """调用宿主回调，回调返回内容时回复到原群组"""
        try:
            response = await asyncio.wait_for(self.on_message(message), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("宿主处理消息 %s 超时 (%.0fs)", message.message_id, timeout)
            return
        except Exception:
            logger.exception("处理消息 %s 时出错", message.message_id)
            return

        if response is None or response.content is None or self.reply is None:
            return

        try:
            await self.reply(message, response.content)
        except Exception:
            logger.exception("回复消息 %s 时出错", message.message_id)

    # -------- 启停 --------

    async def run(self, abort: Optional[asyncio.Event] = None) -> AccountRuntimeStatus:
        """
        启动监听并阻塞到 abort 被触发（或任务被取消），返回最终状态。

        Raises:
            ListenerError: 端口绑定失败，状态置为 failed
        """
        abort = abort or asyncio.Event()
        settings = self.resolve_config().webhook
        self._status.update(state=ReceiverState.STARTING, port=settings.port, last_error=None)

        runner = web.AppRunner(self.create_app(settings.path))
        await runner.setup()
        site = web.TCPSite(runner, settings.host, settings.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            error = f"Webhook 监听 {settings.host}:{settings.port} 失败: {e}"
            self._status.update(state=ReceiverState.FAILED, last_error=error)
            logger.error(error)
            raise ListenerError(error) from e

        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        consumer = asyncio.create_task(self._consume(queue))
        self._status.update(state=ReceiverState.RUNNING, last_start_at=utcnow())
        logger.info("Webhook 已启动: http://%s:%d%s", settings.host, settings.port, settings.path)

        aborted = asyncio.create_task(abort.wait())
        failure: Optional[BaseException] = None
        try:
            await asyncio.wait({aborted, consumer}, return_when=asyncio.FIRST_COMPLETED)
            if consumer.done() and not consumer.cancelled():
                failure = consumer.exception()
        finally:
            aborted.cancel()
            await self._shutdown(runner, queue, consumer, failure)
        return self.status

    async def _shutdown(
        self,
        runner: web.AppRunner,
        queue: asyncio.Queue,
        consumer: asyncio.Task,
        failure: Optional[BaseException],
    ):
        """关闭监听 → 排空队列与进行中的回调 → stopped / failed"""
        if failure is None:
            self._status.update(state=ReceiverState.STOPPING)
            logger.info("正在停止 Webhook...")

        # 先停止接收新连接并等待进行中的请求结束
        await runner.cleanup()
        self._queue = None

        if not consumer.done():
            await queue.join()
            consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if failure is not None:
            error = f"Webhook 异常退出: {failure!r}"
            self._status.update(state=ReceiverState.FAILED, last_error=error)
            logger.error(error)
        else:
            self._status.update(state=ReceiverState.STOPPED, last_stop_at=utcnow())
            logger.info("Webhook 已停止")

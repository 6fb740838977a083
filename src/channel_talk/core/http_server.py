"""
宿主侧 HTTP / WebSocket 服务端

负责:
    - /ws:          WebSocket 端点，推送通过过滤的团队聊天消息，接收宿主回复
    - /api/send:    供宿主主动向 Channel Talk 群组发送消息
    - /api/read:    read 动作，读取群组 / 线程历史
    - /api/health:  账号运行状态
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

import aiohttp
from aiohttp import web

from channel_talk_protocol import InboundMessage, MessageResponse, OutboundMessage

from .channel import ChannelTalkChannel
from .errors import AuthError, ChannelTalkError, NotConfiguredError, ValidationError

logger = logging.getLogger("channel-talk")

# 等待客户端回复的超时秒数
WS_REPLY_TIMEOUT = 60


def _error_status(error: ChannelTalkError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthError):
        return 401
    if isinstance(error, NotConfiguredError):
        return 503
    return 502


class HttpServer:
    """对外 HTTP + WebSocket 服务端，搭配 ChannelTalkChannel 使用"""

    def __init__(
        self,
        channel: ChannelTalkChannel,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        reply_timeout: float = WS_REPLY_TIMEOUT,
    ):
        self.channel = channel
        self.host = host
        self.port = port
        self.reply_timeout = reply_timeout
        self._runner: Optional[web.AppRunner] = None

        self._clients: set[web.WebSocketResponse] = set()
        self._pending: dict[str, asyncio.Future[MessageResponse]] = {}

    # -------- WebSocket 端点 --------

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        """GET /ws: WebSocket 连接入口"""
        ws = web.WebSocketResponse(heartbeat=120)
        await ws.prepare(request)

        self._clients.add(ws)
        peer = request.remote
        logger.info("WebSocket 客户端已连接: %s (当前 %d 个)", peer, len(self._clients))

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(data, dict):
                        continue
                    msg_id = data.get("msg_id", "")
                    fut = self._pending.get(msg_id)
                    if fut and not fut.done():
                        content = data.get("content")
                        logger.info("收到客户端回复 [%s]: %s", msg_id, content)
                        fut.set_result(MessageResponse(content=content))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("WebSocket 错误: %s", ws.exception())
        finally:
            self._clients.discard(ws)
            logger.info("WebSocket 客户端已断开: %s (剩余 %d 个)", peer, len(self._clients))

        return ws

    # -------- 入站回调 --------

    async def on_message(self, message: InboundMessage) -> MessageResponse:
        """
        将团队聊天消息广播给所有 WebSocket 客户端，等待第一个回复。

        发送 JSON:
            {"msg_id", "chat_id", "thread_id", "sender", "person_id",
             "person_type", "text", "timestamp", "line"}

        期望客户端回复 JSON:
            {"msg_id": "对应的消息ID", "content": "回复内容"}  # content 为 null 时不回复
        """
        if not self._clients:
            logger.warning("没有已连接的 WebSocket 客户端，无法转发消息")
            return MessageResponse(content=None)

        # 消息 ID 为空时生成临时 ID，避免并发消息共用同一个等待回复的 future
        reply_key = message.message_id or f"anon-{uuid.uuid4().hex}"
        payload = json.dumps(
            {**message.to_payload(), "msg_id": reply_key, "line": message.format()},
            ensure_ascii=False,
        )

        fut: asyncio.Future[MessageResponse] = asyncio.get_running_loop().create_future()
        self._pending[reply_key] = fut

        dead: set[web.WebSocketResponse] = set()
        for ws in self._clients:
            try:
                await ws.send_str(payload)
            except Exception:
                dead.add(ws)
        self._clients -= dead

        try:
            return await asyncio.wait_for(fut, timeout=self.reply_timeout)
        except asyncio.TimeoutError:
            logger.warning("等待客户端回复超时: %s", reply_key)
            return MessageResponse(content=None)
        finally:
            self._pending.pop(reply_key, None)

    # -------- HTTP 路由 --------

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_post("/api/send", self._handle_send)
        app.router.add_post("/api/read", self._handle_read)
        app.router.add_get("/api/health", self._handle_health)
        return app

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /api/health: 返回账号运行状态"""
        return web.json_response({
            "ok": True,
            **self.channel.account_snapshot(),
            "ws_clients": len(self._clients),
        })

    async def _handle_send(self, request: web.Request) -> web.Response:
        """
        POST /api/send: 主动发送消息到团队聊天

        请求体 JSON:
            {
                "group_id": "xxx",          # 目标群组
                "content": "消息内容",      # 纯文本
                "blocks": [...],            # 可选，text / code / bullets
                "options": [...],           # 可选
                "bot_name": "Bot",          # 可选，默认取配置
                "root_message_id": "..."    # 可选
            }
        """
        try:
            data = await request.json()
        except Exception:
            return web.json_response(
                {"ok": False, "error": "invalid json"}, status=400
            )
        if not isinstance(data, dict):
            return web.json_response(
                {"ok": False, "error": "invalid json"}, status=400
            )

        group_id = str(data.get("group_id") or "")
        content = data.get("content")
        if not group_id or not isinstance(content, str) or not content:
            return web.json_response(
                {"ok": False, "error": "group_id and content required"}, status=400
            )

        blocks = data.get("blocks") or []
        options = data.get("options") or []
        if not isinstance(blocks, list) or not isinstance(options, list):
            return web.json_response(
                {"ok": False, "error": "blocks and options must be lists"}, status=400
            )

        message = OutboundMessage(
            group_id=group_id,
            plain_text=content,
            blocks=blocks,
            options=options,
            bot_name=data.get("bot_name"),
            root_message_id=data.get("root_message_id"),
        )
        try:
            result = await self.channel.send(message)
        except ChannelTalkError as e:
            logger.warning("API send 失败: %s", e)
            return web.json_response({"ok": False, "error": str(e)}, status=_error_status(e))
        return web.json_response({
            "ok": True,
            "message_id": result.message_id,
            "group_id": result.group_id,
        })

    async def _handle_read(self, request: web.Request) -> web.Response:
        """POST /api/read: {"target", "limit", "threadId"}"""
        try:
            params = await request.json()
        except Exception:
            return web.json_response(
                {"ok": False, "error": "invalid json"}, status=400
            )
        if not isinstance(params, dict):
            return web.json_response(
                {"ok": False, "error": "invalid json"}, status=400
            )
        result = await self.channel.handle_action("read", params)
        return web.json_response({"ok": not result.is_error, **result.to_dict()})

    # -------- 启停 --------

    async def start(self):
        """启动 HTTP + WebSocket 服务"""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("HTTP 服务端已启动: http://%s:%d (WebSocket: /ws)", self.host, self.port)

    async def stop(self):
        """停止服务，关闭所有 WebSocket 连接"""
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()

        for fut in self._pending.values():
            if not fut.done():
                fut.cancel()
        self._pending.clear()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP 服务端已停止")

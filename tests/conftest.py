"""pytest 公共夹具：模拟 Channel Talk API 服务端、记录重试等待、运行中的 Webhook"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from channel_talk.core.status import ReceiverState
from channel_talk.models import ChannelTalkConfig, Credentials, WebhookSettings
from channel_talk_protocol import InboundMessage, MessageResponse


class FakeProvider:
    """
    模拟 Channel Talk Open API。

    responses 按顺序出队，每项为 (status, body)，body 为 bytes 时原样返回；队列为空时返回 default。
    所有请求记录在 requests 中。
    """

    def __init__(self):
        self.responses: list[tuple[int, object]] = []
        self.default: tuple[int, object] = (200, {"message": {"id": "msg-default"}})
        self.requests: list[dict] = []
        self.base_url = ""

    def queue(self, *responses: tuple[int, object]):
        self.responses.extend(responses)

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.text()
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body,
        })
        status, payload = self.responses.pop(0) if self.responses else self.default
        if isinstance(payload, bytes):
            return web.Response(body=payload, status=status)
        if isinstance(payload, (dict, list)):
            return web.json_response(payload, status=status)
        return web.Response(text=str(payload), status=status)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        return app


@pytest.fixture
async def provider():
    fake = FakeProvider()
    server = TestServer(fake.create_app())
    await server.start_server()
    fake.base_url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()


class SleepRecorder:
    """替代 asyncio.sleep，只记录等待时长"""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("test-key", "test-secret")


def make_config(**overrides) -> ChannelTalkConfig:
    data = {
        "accessKey": "test-key",
        "accessSecret": "test-secret",
        "webhook": WebhookSettings(host="127.0.0.1", port=unused_port()),
    }
    data.update(overrides)
    return ChannelTalkConfig(**data)


def make_event(
    entity_id: str = "msg-1",
    *,
    chat_type: str = "group",
    person_type: str = "manager",
    text: Optional[str] = "hello",
    chat_id: str = "group-1",
    person_id: str = "manager-1",
    **entity_extra,
) -> dict:
    entity = {
        "id": entity_id,
        "chatType": chat_type,
        "personType": person_type,
        "chatId": chat_id,
        "personId": person_id,
        "createdAt": 1700000000000,
        **entity_extra,
    }
    if text is not None:
        entity["plainText"] = text
    return {
        "event": "push",
        "type": "message.created.teamChat",
        "entity": entity,
        "refers": {
            "manager": {"id": person_id, "name": "Alice"},
            "group": {"id": chat_id, "name": "dev"},
        },
    }


class Inbox:
    """宿主回调替身，记录收到的消息，可选返回回复内容"""

    def __init__(self, reply: Optional[str] = None, gate: Optional[asyncio.Event] = None):
        self.reply = reply
        self.gate = gate
        self.messages: list[InboundMessage] = []

    async def __call__(self, message: InboundMessage) -> MessageResponse:
        self.messages.append(message)
        if self.gate is not None:
            await self.gate.wait()
        return MessageResponse(content=self.reply)


@asynccontextmanager
async def running(receiver):
    """启动 receiver.run()，等到 running 后交给测试，退出时 abort 并等待结束"""
    abort = asyncio.Event()
    task = asyncio.create_task(receiver.run(abort))
    for _ in range(200):
        if receiver.status.state in (ReceiverState.RUNNING, ReceiverState.FAILED) or task.done():
            break
        await asyncio.sleep(0.01)
    try:
        yield abort
    finally:
        abort.set()
        await task

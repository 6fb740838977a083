"""Tests for the channel facade consumed by the host."""

import asyncio
import json

import aiohttp
import pytest

from channel_talk.core.channel import ChannelTalkChannel
from channel_talk.core.errors import AuthError, NotConfiguredError
from channel_talk.core.status import ReceiverState
from channel_talk_protocol import OutboundMessage

from conftest import Inbox, make_config, make_event


class MutableConfig:
    """模拟宿主的配置解析：每次调用返回当前值"""

    def __init__(self, config):
        self.config = config

    def __call__(self):
        return self.config


class TestSend:

    async def test_bot_name_defaults_from_config(self, provider):
        channel = ChannelTalkChannel(lambda: make_config(baseUrl=provider.base_url, botName="Helper"))
        provider.queue((200, {"message": {"id": "m1"}}))

        result = await channel.send(OutboundMessage(group_id="g1", plain_text="hi"))

        assert result.message_id == "m1"
        assert provider.requests[0]["query"] == {"botName": "Helper"}

    async def test_auth_error_recorded_as_last_error(self, provider):
        channel = ChannelTalkChannel(lambda: make_config(baseUrl=provider.base_url))
        provider.queue((401, "expired"))

        with pytest.raises(AuthError):
            await channel.send_text("g1", "hi")

        assert channel.runtime.last_error == "Authentication failed (401): expired"
        assert channel.account_snapshot()["lastError"] == channel.runtime.last_error

    async def test_unconfigured_account_refuses_to_send(self, provider):
        channel = ChannelTalkChannel(lambda: make_config(accessKey="", baseUrl=provider.base_url))

        with pytest.raises(NotConfiguredError):
            await channel.send_text("g1", "hi")

        assert provider.requests == []

    async def test_credentials_resolved_on_every_send(self, provider):
        resolver = MutableConfig(make_config(baseUrl=provider.base_url))
        channel = ChannelTalkChannel(resolver)

        await channel.send_text("g1", "one")
        resolver.config = make_config(baseUrl=provider.base_url, accessKey="rotated")
        await channel.send_text("g1", "two")

        keys = [r["headers"]["x-access-key"] for r in provider.requests]
        assert keys == ["test-key", "rotated"]


class TestActionsAndConfig:

    def test_list_actions_requires_credentials(self):
        assert ChannelTalkChannel(make_config).list_actions() == ["read"]
        assert ChannelTalkChannel(lambda: make_config(accessSecret="")).list_actions() == []

    async def test_unknown_action_returns_none(self):
        assert await ChannelTalkChannel(make_config).handle_action("pin", {}) is None

    def test_warnings_and_probe(self):
        channel = ChannelTalkChannel(lambda: make_config(mentionOnly=True))
        warnings = channel.collect_warnings()
        assert any("mentionOnly" in w for w in warnings)
        assert channel.probe() == {"configured": True, "enabled": True}


class TestStartAccount:

    async def test_unconfigured_account_does_not_listen(self):
        channel = ChannelTalkChannel(lambda: make_config(accessKey=""))

        status = await channel.start_account(Inbox())

        assert status.state == ReceiverState.STOPPED
        assert channel.receiver is None

    async def test_end_to_end_reply(self, provider):
        config = make_config(baseUrl=provider.base_url)
        statuses = []
        channel = ChannelTalkChannel(lambda: config, on_status=statuses.append)
        abort = asyncio.Event()
        task = asyncio.create_task(channel.start_account(Inbox(reply="pong"), abort))
        for _ in range(200):
            if channel.runtime.running:
                break
            await asyncio.sleep(0.01)

        url = f"http://127.0.0.1:{config.webhook.port}{config.webhook.path}"
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=make_event(
                "e-1", text="ping", threadMsg=True, rootMessageId="root-1"
            )) as resp:
                assert resp.status == 200
        abort.set()
        final = await task

        assert final.state == ReceiverState.STOPPED
        assert [s.state for s in statuses][:2] == [ReceiverState.STARTING, ReceiverState.RUNNING]
        sent = provider.requests[0]
        assert sent["path"] == "/open/v5/groups/group-1/messages"
        assert json.loads(sent["body"]) == {"plainText": "pong"}

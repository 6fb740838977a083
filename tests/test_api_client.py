"""Tests for the outbound Channel Talk API client: retry policy, request shape, responses."""

import json

import pytest
from aiohttp.test_utils import unused_port

from channel_talk.core.api_client import (
    ChannelTalkClient,
    FatalFailure,
    RetryableFailure,
    Success,
    build_message_body,
    classify_response,
    extract_message_id,
)
from channel_talk.core.errors import (
    AuthError,
    NetworkError,
    ProviderError,
    RateLimitExhausted,
    ValidationError,
)
from channel_talk_protocol import BulletsBlock, CodeBlock, MessageOption, OutboundMessage, TextBlock


def make_client(provider, credentials, sleeper) -> ChannelTalkClient:
    return ChannelTalkClient(credentials, provider.base_url, sleep=sleeper)


# ============================================================================
# Retry policy
# ============================================================================

class TestRetryPolicy:

    @pytest.mark.parametrize("first,second", [(429, 503), (500, 500), (502, 429)])
    async def test_succeeds_on_third_attempt_after_two_fixed_delays(
        self, provider, credentials, sleeper, first, second
    ):
        provider.queue(
            (first, "busy"),
            (second, "busy"),
            (200, {"message": {"id": "m-3", "plainText": "hi"}}),
        )
        client = make_client(provider, credentials, sleeper)

        result = await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert result.message_id == "m-3"
        assert result.group_id == "g1"
        assert sleeper.delays == [1.0, 3.0]
        assert len(provider.requests) == 3

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure_is_never_retried(self, provider, credentials, sleeper, status):
        provider.queue((status, "bad credentials"))
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(AuthError) as exc_info:
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert exc_info.value.status == status
        assert exc_info.value.body == "bad credentials"
        assert sleeper.delays == []
        assert len(provider.requests) == 1

    @pytest.mark.parametrize("status", [400, 404, 422])
    async def test_other_client_errors_fail_immediately(self, provider, credentials, sleeper, status):
        provider.queue((status, "nope"))
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(ProviderError) as exc_info:
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert not isinstance(exc_info.value, RateLimitExhausted)
        assert exc_info.value.status == status
        assert sleeper.delays == []
        assert len(provider.requests) == 1

    async def test_three_server_errors_raise_rate_limit_exhausted_with_last_body(
        self, provider, credentials, sleeper
    ):
        provider.queue((500, "boom-1"), (500, "boom-2"), (500, "boom-3"))
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(RateLimitExhausted) as exc_info:
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert exc_info.value.status == 500
        assert exc_info.value.body == "boom-3"
        assert sleeper.delays == [1.0, 3.0]
        assert len(provider.requests) == 3

    async def test_auth_failure_after_retryable_error_stops_immediately(
        self, provider, credentials, sleeper
    ):
        provider.queue((503, "down"), (401, "revoked"))
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(AuthError):
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert sleeper.delays == [1.0]
        assert len(provider.requests) == 2

    async def test_transport_failure_is_retried_then_surfaces_network_error(
        self, credentials, sleeper
    ):
        client = ChannelTalkClient(
            credentials, f"http://127.0.0.1:{unused_port()}", sleep=sleeper, timeout=2
        )

        with pytest.raises(NetworkError):
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert sleeper.delays == [1.0, 3.0]

    async def test_undecodable_error_body_still_retried(self, provider, credentials, sleeper):
        provider.queue(*[(502, b"\xff\xfe bad gateway")] * 3)
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(RateLimitExhausted) as exc_info:
            await client.send_message(OutboundMessage(group_id="g1", plain_text="hi"))

        assert exc_info.value.status == 502
        assert "bad gateway" in exc_info.value.body
        assert sleeper.delays == [1.0, 3.0]
        assert len(provider.requests) == 3


class TestClassifyResponse:

    def test_success_parses_json(self):
        outcome = classify_response(201, '{"id": "x"}')
        assert isinstance(outcome, Success)
        assert outcome.data == {"id": "x"}

    def test_success_with_invalid_json_is_fatal(self):
        outcome = classify_response(200, "<html>")
        assert isinstance(outcome, FatalFailure)
        assert isinstance(outcome.error, ProviderError)

    def test_rate_limit_is_retryable(self):
        assert isinstance(classify_response(429, ""), RetryableFailure)
        assert isinstance(classify_response(599, ""), RetryableFailure)

    def test_forbidden_is_fatal_auth(self):
        outcome = classify_response(403, "denied")
        assert isinstance(outcome, FatalFailure)
        assert isinstance(outcome.error, AuthError)


# ============================================================================
# Request construction
# ============================================================================

class TestRequestShape:

    async def test_headers_url_and_bot_name_query(self, provider, credentials, sleeper):
        client = make_client(provider, credentials, sleeper)

        await client.send_message(
            OutboundMessage(group_id="g-42", plain_text="hello", bot_name="Helper")
        )

        req = provider.requests[0]
        assert req["method"] == "POST"
        assert req["path"] == "/open/v5/groups/g-42/messages"
        assert req["query"] == {"botName": "Helper"}
        assert req["headers"]["x-access-key"] == "test-key"
        assert req["headers"]["x-access-secret"] == "test-secret"
        assert req["headers"]["Content-Type"].startswith("application/json")
        assert "botName" not in json.loads(req["body"])

    async def test_empty_blocks_and_options_are_omitted(self, provider, credentials, sleeper):
        client = make_client(provider, credentials, sleeper)

        await client.send_message(OutboundMessage(group_id="g1", plain_text="hello"))

        body = json.loads(provider.requests[0]["body"])
        assert body == {"plainText": "hello"}
        assert provider.requests[0]["query"] == {}

    async def test_blocks_and_options_are_serialized(self, provider, credentials, sleeper):
        client = make_client(provider, credentials, sleeper)

        await client.send_message(OutboundMessage(
            group_id="g1",
            plain_text="report",
            blocks=[
                TextBlock("<b>report</b>"),
                CodeBlock("print(1)"),
                BulletsBlock((TextBlock("a"), TextBlock("b"))),
            ],
            options=[MessageOption.SILENT, "private"],
        ))

        body = json.loads(provider.requests[0]["body"])
        assert body["blocks"] == [
            {"type": "text", "value": "<b>report</b>"},
            {"type": "code", "value": "print(1)"},
            {"type": "bullets", "blocks": [
                {"type": "text", "value": "a"},
                {"type": "text", "value": "b"},
            ]},
        ]
        assert body["options"] == ["silent", "private"]

    async def test_unknown_block_fails_before_any_request(self, provider, credentials, sleeper):
        client = make_client(provider, credentials, sleeper)

        with pytest.raises(ValidationError):
            await client.send_message(OutboundMessage(
                group_id="g1", plain_text="x", blocks=[{"type": "image", "url": "u"}]
            ))

        assert provider.requests == []

    def test_bullets_with_non_text_items_are_rejected(self):
        message = OutboundMessage(
            group_id="g1", plain_text="x", blocks=[BulletsBlock((CodeBlock("no"),))]
        )
        with pytest.raises(ValidationError):
            build_message_body(message)

    def test_unknown_option_is_rejected(self):
        message = OutboundMessage(group_id="g1", plain_text="x", options=["loud"])
        with pytest.raises(ValidationError):
            build_message_body(message)

    def test_missing_group_id_is_rejected(self):
        with pytest.raises(ValidationError):
            build_message_body(OutboundMessage(group_id="", plain_text="x"))


# ============================================================================
# Response interpretation
# ============================================================================

class TestResponseInterpretation:

    async def test_message_id_from_nested_message(self, provider, credentials, sleeper):
        provider.queue((200, {"message": {"id": "m1", "chatId": "g1"}}))
        client = make_client(provider, credentials, sleeper)

        result = await client.send_message(OutboundMessage(group_id="g1", plain_text="x"))

        assert result.message_id == "m1"
        assert result.message == {"id": "m1", "chatId": "g1"}

    async def test_message_id_falls_back_to_top_level(self, provider, credentials, sleeper):
        provider.queue((200, {"id": "m2"}))
        client = make_client(provider, credentials, sleeper)

        result = await client.send_message(OutboundMessage(group_id="g1", plain_text="x"))

        assert result.message_id == "m2"
        assert result.message is None

    def test_message_id_defaults_to_empty_string(self):
        assert extract_message_id({}) == ""
        assert extract_message_id({"message": {}}) == ""
        assert extract_message_id({"message": {}, "id": 7}) == "7"


# ============================================================================
# Read endpoints
# ============================================================================

class TestReadEndpoints:

    async def test_get_messages(self, provider, credentials, sleeper):
        provider.queue((200, {"messages": []}))
        client = make_client(provider, credentials, sleeper)

        data = await client.get_messages("g1", limit=5)

        assert data == {"messages": []}
        req = provider.requests[0]
        assert req["method"] == "GET"
        assert req["path"] == "/open/v5/groups/g1/messages"
        assert req["query"] == {"limit": "5", "sortOrder": "desc"}

    async def test_get_thread_messages_retries_like_send(self, provider, credentials, sleeper):
        provider.queue((503, "down"), (200, {"messages": [{"id": "r1"}]}))
        client = make_client(provider, credentials, sleeper)

        data = await client.get_thread_messages("g1", "root-1")

        assert data["messages"] == [{"id": "r1"}]
        assert provider.requests[-1]["path"] == "/open/v5/groups/g1/messages/root-1/thread"
        assert sleeper.delays == [1.0]

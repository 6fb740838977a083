from .api_client import ChannelTalkClient, send_message
from .channel import ChannelTalkChannel
from .errors import (
    AuthError,
    ChannelTalkError,
    ListenerError,
    NetworkError,
    NotConfiguredError,
    ProviderError,
    RateLimitExhausted,
    ValidationError,
)
from .http_server import HttpServer
from .policy import Decision, RejectReason, decide
from .status import AccountRuntimeStatus, ReceiverState
from .webhook import WebhookReceiver

__all__ = [
    "AccountRuntimeStatus",
    "AuthError",
    "ChannelTalkChannel",
    "ChannelTalkClient",
    "ChannelTalkError",
    "Decision",
    "HttpServer",
    "ListenerError",
    "NetworkError",
    "NotConfiguredError",
    "ProviderError",
    "RateLimitExhausted",
    "ReceiverState",
    "RejectReason",
    "ValidationError",
    "WebhookReceiver",
    "decide",
    "send_message",
]

"""
错误分类

    AuthError           401/403，配置问题，不重试
    ProviderError       其他 4xx，或重试耗尽后的服务端错误
    RateLimitExhausted  429/5xx 重试耗尽
    NetworkError        传输层失败（连接、DNS、超时）
    ValidationError     出站消息或 Webhook 载荷不合法，在边界处拒绝
    NotConfiguredError  缺少凭据
    ListenerError       Webhook 监听端口绑定失败

服务端返回的错误体只保留原始文本，不假设任何结构。
"""

from typing import Optional


class ChannelTalkError(Exception):
    """所有桥接错误的基类"""


class AuthError(ChannelTalkError):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Authentication failed ({status}): {body}")
        self.status = status
        self.body = body


class ProviderError(ChannelTalkError):
    def __init__(self, status: Optional[int], body: str = ""):
        super().__init__(f"API error ({status}): {body}")
        self.status = status
        self.body = body


class RateLimitExhausted(ProviderError):
    """429/5xx 在最后一次重试后仍失败，调用方不应再重试"""


class NetworkError(ChannelTalkError):
    pass


class ValidationError(ChannelTalkError, ValueError):
    pass


class NotConfiguredError(ChannelTalkError):
    """accessKey / accessSecret 缺失，账号不处理任何收发"""


class ListenerError(ChannelTalkError):
    pass

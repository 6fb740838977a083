"""
Pydantic 配置模型

通过 config.yaml 管理除凭据以外的所有配置项。
Channel Talk 凭据（CHANNEL_TALK_ACCESS_KEY / CHANNEL_TALK_ACCESS_SECRET）
优先由 .env 环境变量提供。
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
import yaml

DEFAULT_BASE_URL = "https://api.channel.io"
DEFAULT_WEBHOOK_PORT = 3979
DEFAULT_WEBHOOK_PATH = "/api/channel-talk"
DEFAULT_ACCOUNT_ID = "default"

ENV_ACCESS_KEY = "CHANNEL_TALK_ACCESS_KEY"
ENV_ACCESS_SECRET = "CHANNEL_TALK_ACCESS_SECRET"


@dataclass(frozen=True)
class Credentials:
    """API 凭据，repr 中不出现密钥内容"""
    access_key: str = field(repr=False)
    access_secret: str = field(repr=False)


class WebhookSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    port: int = Field(DEFAULT_WEBHOOK_PORT, description="Webhook 监听端口")
    path: str = Field(DEFAULT_WEBHOOK_PATH, description="Webhook 路径")
    host: str = Field("0.0.0.0", description="Webhook 监听地址")


class ChannelTalkConfig(BaseModel):
    """channels.channel-talk 配置段，键名使用 camelCase，未知键直接报错"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    enabled: bool = Field(True, description="是否启用")
    access_key: str = Field("", alias="accessKey", description="API access key")
    access_secret: str = Field("", alias="accessSecret", description="API access secret")
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    bot_name: Optional[str] = Field(None, alias="botName", description="发送消息时显示的 Bot 名称")
    bot_person_id: Optional[str] = Field(
        None, alias="botPersonId", description="Bot 自身的 personId，用于过滤自己发出的消息"
    )
    group_policy: Literal["open", "closed"] = Field("open", alias="groupPolicy")
    allowed_groups: list[str] = Field(default_factory=list, alias="allowedGroups")
    mention_only: bool = Field(False, alias="mentionOnly")
    base_url: str = Field(DEFAULT_BASE_URL, alias="baseUrl")
    callback_timeout: float = Field(
        60, alias="callbackTimeout", description="宿主回调超时秒数"
    )

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "ChannelTalkConfig":
        """用环境变量中的凭据覆盖配置文件中的值，返回新对象"""
        env = os.environ if environ is None else environ
        updates = {}
        if env.get(ENV_ACCESS_KEY):
            updates["access_key"] = env[ENV_ACCESS_KEY]
        if env.get(ENV_ACCESS_SECRET):
            updates["access_secret"] = env[ENV_ACCESS_SECRET]
        return self.model_copy(update=updates) if updates else self

    def credentials(self) -> Optional[Credentials]:
        """两项凭据都非空时才视为已配置，否则返回 None"""
        if not self.access_key or not self.access_secret:
            return None
        return Credentials(self.access_key, self.access_secret)


class ServerConfig(BaseModel):
    host: str = Field("0.0.0.0", description="宿主 HTTP 监听地址")
    port: int = Field(8080, description="宿主 HTTP 监听端口")


class LogConfig(BaseModel):
    level: str = Field("INFO", description="日志级别")
    dir: Optional[str] = Field(None, description="日志输出目录，不指定则仅控制台")


class AppConfig(BaseModel):
    channel_talk: ChannelTalkConfig = Field(default_factory=ChannelTalkConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: str | Path = "config.yaml") -> "AppConfig":
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)


def collect_warnings(config: ChannelTalkConfig) -> list[str]:
    """配置解析阶段的安全 / 一致性提示"""
    warnings: list[str] = []
    if config.group_policy == "open" and not config.allowed_groups:
        warnings.append(
            '- Channel Talk: groupPolicy="open" processes all team chat messages. '
            'Set channels.channel-talk.groupPolicy="closed" to disable team chat processing.'
        )
    if config.mention_only and not config.bot_name:
        warnings.append(
            "- Channel Talk: mentionOnly=true requires botName; "
            "all team chat messages will be rejected until botName is set."
        )
    return warnings


def apply_setup(
    raw: Optional[Mapping[str, object]],
    token: Optional[str] = None,
    bot_token: Optional[str] = None,
) -> dict:
    """
    将初始化向导的输入合并到原始配置段。

    Args:
        raw:       现有 channel-talk 配置（camelCase 字典）
        token:     access key
        bot_token: access secret
    """
    merged = dict(raw or {})
    if token:
        merged["accessKey"] = token
    if bot_token:
        merged["accessSecret"] = bot_token
    merged["enabled"] = True
    return merged

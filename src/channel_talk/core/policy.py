"""
群聊准入过滤

decide(config, event) 是纯函数，按以下顺序检查，遇到第一个拒绝即返回:
    1. groupPolicy == closed            → PolicyClosed
    2. allowedGroups 非空且不含 chatId   → NotAllowlisted
    3. mentionOnly 且文本未提及 botName  → NoMention
       （mentionOnly 但未配置 botName    → MentionUnconfigured，全部拒绝）
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from channel_talk_protocol import InboundEvent

from ..models import ChannelTalkConfig


class RejectReason(str, Enum):
    POLICY_CLOSED = "PolicyClosed"
    NOT_ALLOWLISTED = "NotAllowlisted"
    NO_MENTION = "NoMention"
    MENTION_UNCONFIGURED = "MentionUnconfigured"


@dataclass(frozen=True)
class Decision:
    accepted: bool
    reason: Optional[RejectReason] = None


ACCEPT = Decision(True)


def _reject(reason: RejectReason) -> Decision:
    return Decision(False, reason)


# 名称后紧跟的韩文音节视为助词 / 敬称（如 "도우미님", "도우미야"），不打断提及
_HANGUL = "\u1100-\u11ff\u3130-\u318f\uac00-\ud7a3"


def mentions(text: str, bot_name: str) -> bool:
    """文本中是否以独立词出现 bot 名称（可带 @ 前缀，大小写不敏感，允许韩文助词后缀）"""
    pattern = rf"(?<!\w)@?{re.escape(bot_name.strip())}(?![^\W{_HANGUL}])"
    return re.search(pattern, text, re.IGNORECASE) is not None


def decide(config: ChannelTalkConfig, event: InboundEvent) -> Decision:
    if config.group_policy == "closed":
        return _reject(RejectReason.POLICY_CLOSED)

    if config.allowed_groups and event.entity.chat_id not in config.allowed_groups:
        return _reject(RejectReason.NOT_ALLOWLISTED)

    if config.mention_only:
        if not config.bot_name or not config.bot_name.strip():
            return _reject(RejectReason.MENTION_UNCONFIGURED)
        if not mentions(event.entity.text, config.bot_name):
            return _reject(RejectReason.NO_MENTION)

    return ACCEPT

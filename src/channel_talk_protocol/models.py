"""
Channel Talk 通信协议数据结构

所有模型基于标准库 dataclass，零外部依赖。
出站消息 (OutboundMessage / MessageBlock) 与入站事件 (InboundEvent)
的字段与 Channel Talk Open API v5 的 JSON 结构一一对应。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class ChatType(str, Enum):
    """会话类型，本通道只处理 GROUP"""

    GROUP = "group"         # 团队聊天
    USER = "user"           # 私聊
    CUSTOMER = "customer"   # 客户咨询


class PersonType(str, Enum):
    """发送者类型"""

    MANAGER = "manager"
    BOT = "bot"
    CUSTOMER = "customer"


class MessageOption(str, Enum):
    """发送消息时可附带的行为选项"""

    ACT_AS_MANAGER = "actAsManager"
    DISPLAY_AS_CHANNEL = "displayAsChannel"
    DO_NOT_POST = "doNotPost"
    DO_NOT_SEARCH = "doNotSearch"
    DO_NOT_SEND_APP = "doNotSendApp"
    DO_NOT_UPDATE_DESK = "doNotUpdateDesk"
    IMMUTABLE = "immutable"
    PRIVATE = "private"
    SILENT = "silent"


# -------- 消息块 --------


@dataclass(frozen=True)
class TextBlock:
    """文本块，value 支持 <b> <i> <link> 等 HTML 标记"""
    value: str

    def to_dict(self) -> dict:
        return {"type": "text", "value": self.value}


@dataclass(frozen=True)
class CodeBlock:
    value: str

    def to_dict(self) -> dict:
        return {"type": "code", "value": self.value}


@dataclass(frozen=True)
class BulletsBlock:
    """项目符号列表，每一项都是 TextBlock"""
    blocks: tuple[TextBlock, ...] = ()

    def to_dict(self) -> dict:
        return {"type": "bullets", "blocks": [b.to_dict() for b in self.blocks]}


MessageBlock = Union[TextBlock, CodeBlock, BulletsBlock]


def block_from_dict(data: Any) -> MessageBlock:
    """
    将 JSON 形式的消息块解析为 dataclass。

    只接受 text / code / bullets 三种类型，其余一律抛出 ValueError，
    不会静默丢弃。
    """
    if not isinstance(data, dict):
        raise ValueError(f"消息块必须是对象: {data!r}")
    kind = data.get("type")
    if kind in ("text", "code"):
        value = data.get("value")
        if not isinstance(value, str):
            raise ValueError(f"{kind} 块缺少字符串 value")
        return TextBlock(value) if kind == "text" else CodeBlock(value)
    if kind == "bullets":
        items = data.get("blocks")
        if not isinstance(items, list):
            raise ValueError("bullets 块缺少 blocks 列表")
        parsed = tuple(block_from_dict(item) for item in items)
        if not all(isinstance(b, TextBlock) for b in parsed):
            raise ValueError("bullets 块只能包含 text 块")
        return BulletsBlock(parsed)
    raise ValueError(f"未知的消息块类型: {kind!r}")


# -------- 出站 --------


@dataclass
class OutboundMessage:
    """
    发往团队聊天的消息

    Attributes:
        group_id:        目标群组 ID
        plain_text:      纯文本内容，始终发送
        blocks:          富文本消息块，为空时不出现在请求体中
        options:         消息选项，为空时不出现在请求体中
        bot_name:        以该 Bot 名义发送（作为查询参数）
        root_message_id: 线程根消息 ID，仅供调用方关联使用
    """
    group_id: str
    plain_text: str
    blocks: list = field(default_factory=list)
    options: list = field(default_factory=list)
    bot_name: Optional[str] = None
    root_message_id: Optional[str] = None


@dataclass
class SendResult:
    """发送结果，message 为服务端返回的原始 message 对象"""
    message_id: str
    group_id: str
    message: Optional[dict] = None


# -------- 入站 --------


@dataclass
class EntityRef:
    id: str
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["EntityRef"]:
        if not isinstance(data, dict) or data.get("id") is None:
            return None
        name = data.get("name")
        return cls(id=str(data["id"]), name=name if isinstance(name, str) else None)


@dataclass
class Entity:
    """Webhook 事件中的消息实体"""
    id: str
    chat_type: str
    person_type: str
    plain_text: Optional[str] = None
    blocks: list = field(default_factory=list)
    chat_id: Optional[str] = None
    person_id: Optional[str] = None
    created_at: Optional[int] = None
    thread_msg: bool = False
    thread_key: Optional[str] = None
    root_message_id: Optional[str] = None
    thread_root: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "Entity":
        def opt_str(key: str) -> Optional[str]:
            value = data.get(key)
            return None if value is None else str(value)

        created_at = data.get("createdAt")
        blocks = data.get("blocks")
        return cls(
            id=str(data.get("id", "")),
            chat_type=str(data.get("chatType", "")),
            person_type=str(data.get("personType", "")),
            plain_text=opt_str("plainText"),
            blocks=blocks if isinstance(blocks, list) else [],
            chat_id=opt_str("chatId"),
            person_id=opt_str("personId"),
            created_at=created_at if isinstance(created_at, (int, float)) else None,
            thread_msg=bool(data.get("threadMsg", False)),
            thread_key=opt_str("threadKey"),
            root_message_id=opt_str("rootMessageId"),
            thread_root=bool(data.get("threadRoot", False)),
        )

    @property
    def text(self) -> str:
        """纯文本内容；缺少 plainText 时由 text/bullets 块拼接"""
        if self.plain_text is not None:
            return self.plain_text
        parts: list[str] = []
        for block in self.blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") in ("text", "code") and isinstance(block.get("value"), str):
                parts.append(block["value"])
            elif block.get("type") == "bullets":
                for item in block.get("blocks") or []:
                    if isinstance(item, dict) and isinstance(item.get("value"), str):
                        parts.append(item["value"])
        return "\n".join(parts)


@dataclass
class InboundEvent:
    """
    Channel Talk Webhook 原始事件

    refers 中的 manager / group 仅用于展示，不参与任何鉴权判断。
    """
    event: str
    entity: Entity
    type: Optional[str] = None
    manager: Optional[EntityRef] = None
    group: Optional[EntityRef] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "InboundEvent":
        """解析 Webhook JSON，缺少 entity 对象时抛出 ValueError"""
        if not isinstance(data, dict):
            raise ValueError("Webhook 载荷必须是 JSON 对象")
        entity = data.get("entity")
        if not isinstance(entity, dict):
            raise ValueError("Webhook 载荷缺少 entity")
        refers = data.get("refers") if isinstance(data.get("refers"), dict) else {}
        event_type = data.get("type")
        return cls(
            event=str(data.get("event", "")),
            type=event_type if isinstance(event_type, str) else None,
            entity=Entity.from_dict(entity),
            manager=EntityRef.from_dict(refers.get("manager")),
            group=EntityRef.from_dict(refers.get("group")),
            raw=data,
        )


def format_timestamp(created_at: Optional[float]) -> str:
    """毫秒时间戳 → ISO 8601 (UTC, 毫秒精度, Z 结尾)，缺失或越界时返回空串"""
    if created_at is None:
        return ""
    try:
        dt = datetime.fromtimestamp(created_at / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class InboundMessage:
    """
    交给宿主处理的标准化入站消息

    Attributes:
        sender:      展示用发送者名称
        text:        消息文本
        chat_id:     群组 ID（回复目标）
        thread_id:   线程 ID，非线程消息为 None
        timestamp:   ISO 8601 时间
        message_id:  消息 ID（去重 / 关联回复）
        person_id:   发送者 ID
        person_type: 发送者类型
        raw:         原始事件数据（仅服务端内部使用）
    """
    sender: str
    text: str
    chat_id: str
    timestamp: str
    message_id: str = ""
    thread_id: Optional[str] = None
    person_id: Optional[str] = None
    person_type: str = PersonType.MANAGER.value
    raw: dict = field(default_factory=dict)

    def format(self) -> str:
        thread = " [thread]" if self.thread_id else ""
        return f"[{self.timestamp}] {self.sender}{thread}: {self.text}"

    def to_payload(self) -> dict:
        """推送给 WebSocket 客户端的 JSON 结构（不含 raw）"""
        return {
            "msg_id": self.message_id,
            "chat_id": self.chat_id,
            "thread_id": self.thread_id,
            "sender": self.sender,
            "person_id": self.person_id,
            "person_type": self.person_type,
            "text": self.text,
            "timestamp": self.timestamp,
        }


@dataclass
class MessageResponse:
    """
    宿主回调的回复载体

    Attributes:
        content: 回复内容，为 None 时表示不回复
    """
    content: Optional[str] = None

"""
channel-talk-protocol: Channel Talk 桥接服务通信协议

定义 Channel Talk Open API 的出站消息、入站 Webhook 事件，
以及桥接服务交给宿主的标准化入站消息。

使用:
    from channel_talk_protocol import OutboundMessage, TextBlock

    msg = OutboundMessage(
        group_id="12345",
        plain_text="部署完成",
        blocks=[TextBlock("<b>部署完成</b>")],
    )
"""

from .models import (
    BulletsBlock,
    ChatType,
    CodeBlock,
    Entity,
    EntityRef,
    InboundEvent,
    InboundMessage,
    MessageBlock,
    MessageOption,
    MessageResponse,
    OutboundMessage,
    PersonType,
    SendResult,
    TextBlock,
    block_from_dict,
    format_timestamp,
)

__all__ = [
    "BulletsBlock",
    "ChatType",
    "CodeBlock",
    "Entity",
    "EntityRef",
    "InboundEvent",
    "InboundMessage",
    "MessageBlock",
    "MessageOption",
    "MessageResponse",
    "OutboundMessage",
    "PersonType",
    "SendResult",
    "TextBlock",
    "block_from_dict",
    "format_timestamp",
]

"""
channel-talk-bridge: 채널톡 (Channel Talk) Team Chat 与聊天自动化宿主之间的桥接服务

    - 出站: ChannelTalkClient 调用 Open API v5 发送 / 读取消息，带固定间隔重试
    - 入站: WebhookReceiver 接收 Webhook，过滤后交给宿主回调
    - 门面: ChannelTalkChannel 汇总配置、收发、动作与状态
"""

from .models import AppConfig, ChannelTalkConfig, Credentials

__all__ = ["AppConfig", "ChannelTalkConfig", "Credentials"]

"""
账号运行状态

AccountRuntimeStatus 是不可变快照，每次生命周期切换都整体替换，
读取方（状态上报 / 健康检查）永远只拿到完整的一份记录。
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from ..models import DEFAULT_ACCOUNT_ID, ChannelTalkConfig

logger = logging.getLogger("channel-talk")


class ReceiverState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(frozen=True)
class AccountRuntimeStatus:
    account_id: str = DEFAULT_ACCOUNT_ID
    state: ReceiverState = ReceiverState.STOPPED
    last_start_at: Optional[datetime] = None
    last_stop_at: Optional[datetime] = None
    last_error: Optional[str] = None
    port: Optional[int] = None

    @property
    def running(self) -> bool:
        return self.state == ReceiverState.RUNNING


StatusListener = Callable[[AccountRuntimeStatus], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusStore:
    """持有当前快照；写入只做引用替换，不修改已有对象"""

    def __init__(
        self,
        account_id: str = DEFAULT_ACCOUNT_ID,
        on_change: Optional[StatusListener] = None,
    ):
        self._current = AccountRuntimeStatus(account_id=account_id)
        self._on_change = on_change

    @property
    def current(self) -> AccountRuntimeStatus:
        return self._current

    def update(self, **changes) -> AccountRuntimeStatus:
        snapshot = replace(self._current, **changes)
        self._current = snapshot
        if self._on_change is not None:
            try:
                self._on_change(snapshot)
            except Exception:
                logger.exception("状态回调异常")
        return snapshot


# -------- 只读投影 --------


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_account_snapshot(
    config: ChannelTalkConfig, runtime: Optional[AccountRuntimeStatus] = None
) -> dict:
    """账号快照：由当前配置和运行状态即时计算，不保存任何副本"""
    runtime = runtime or AccountRuntimeStatus()
    return {
        "accountId": runtime.account_id,
        "configured": config.credentials() is not None,
        "enabled": config.enabled,
        "state": runtime.state.value,
        "running": runtime.running,
        "lastStartAt": _iso(runtime.last_start_at),
        "lastStopAt": _iso(runtime.last_stop_at),
        "lastError": runtime.last_error,
        "port": runtime.port,
    }


def build_channel_summary(snapshot: dict) -> dict:
    return {
        "configured": snapshot.get("configured", False),
        "running": snapshot.get("running", False),
        "lastStartAt": snapshot.get("lastStartAt"),
        "lastStopAt": snapshot.get("lastStopAt"),
        "lastError": snapshot.get("lastError"),
        "port": snapshot.get("port"),
    }


def probe_account(config: ChannelTalkConfig) -> dict:
    return {
        "configured": config.credentials() is not None,
        "enabled": config.enabled,
    }

"""
环境变量、配置文件加载与日志配置

提供的工具:
    load_env()       : 从 .env 文件加载 Channel Talk 凭据等环境变量
    load_app_config(): 读取 config.yaml 并叠加环境变量中的凭据
    ConfigResolver   : 按文件 mtime 缓存解析结果，运行期每次取配置时使用
    setup_logging()  : 配置全局日志格式，可选同时输出到目录
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .models import AppConfig, ChannelTalkConfig, collect_warnings

logger = logging.getLogger("channel-talk")


def load_env(env_path: Optional[str] = None):
    """
    加载 .env 文件到 os.environ，已存在的环境变量不会被覆盖。

    Args:
        env_path: .env 文件路径。未指定时使用当前工作目录下的 .env
    """
    path = Path(env_path) if env_path else Path.cwd() / ".env"
    load_dotenv(path)


def load_app_config(
    path: str | Path = "config.yaml",
    environ: Optional[Mapping[str, str]] = None,
    *,
    warn: bool = True,
) -> AppConfig:
    """
    解析完整配置。每次调用都重新读取，凭据不做缓存。

    配置不一致（如 mentionOnly 但没有 botName）时只记录警告，
    具体拒绝逻辑由过滤器负责。
    """
    app = AppConfig.from_yaml(path)
    app = app.model_copy(update={"channel_talk": app.channel_talk.with_env(environ)})
    if warn:
        for warning in collect_warnings(app.channel_talk):
            logger.warning(warning)
    return app


def setup_logging(log_dir: Optional[str] = None, level: int | str = logging.INFO):
    """
    配置全局日志。

    日志始终输出到控制台，如果指定了 log_dir 则同时写入该目录下
    以启动时间命名的日志文件（格式: YYYYMMDD_HHMMSS.log）。

    Args:
        log_dir: 日志输出目录，None 表示仅控制台输出
        level:   日志级别，默认 INFO，也接受 "DEBUG" 这类字符串
    """
    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir:
        dir_path = Path(log_dir)
        dir_path.mkdir(parents=True, exist_ok=True)
        filename = datetime.now().strftime("%Y%m%d_%H%M%S") + ".log"
        handlers.append(logging.FileHandler(dir_path / filename, encoding="utf-8"))

    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, handlers=handlers)


class ConfigResolver:
    """
    按文件修改时间缓存的配置解析器，供 Webhook / 发送路径每次调用。

    只有 config.yaml 的 mtime 或大小变化时才重新读取解析；
    环境变量中的凭据每次调用都重新叠加，不随文件缓存。
    """

    def __init__(self, path: str | Path = "config.yaml", environ: Optional[Mapping[str, str]] = None):
        self.path = Path(path)
        self.environ = environ
        self._key: Optional[tuple[int, int]] = None
        self._cached: Optional[AppConfig] = None

    def _file_key(self) -> Optional[tuple[int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def app_config(self) -> AppConfig:
        key = self._file_key()
        if self._cached is None or key != self._key:
            self._cached = AppConfig.from_yaml(self.path)
            self._key = key
            logger.debug("已重新加载配置文件 %s", self.path)
        channel_talk = self._cached.channel_talk.with_env(self.environ)
        return self._cached.model_copy(update={"channel_talk": channel_talk})

    def __call__(self) -> ChannelTalkConfig:
        return self.app_config().channel_talk

"""
Channel Talk 桥接服务入口

用法:
    python -m channel_talk                           # 使用默认配置启动
    python -m channel_talk --host 0.0.0.0 --port 9090  # 指定宿主 HTTP 监听地址
    python -m channel_talk --log-dir logs            # 日志同时输出到目录
    python -m channel_talk --env /path/to/.env       # 指定环境变量文件
    python -m channel_talk --config config.yaml      # 指定配置文件

启动流程:
    1. 解析命令行参数
    2. 加载 .env 环境变量与 config.yaml
    3. 初始化日志
    4. 创建 ChannelTalkChannel（Channel Talk 收发）
    5. 创建 HttpServer（宿主侧 HTTP / WebSocket 接口）
    6. 启动 Webhook 监听，Ctrl+C 触发 abort 优雅退出
"""

import argparse
import asyncio
import logging
import os

from .config import ConfigResolver, load_app_config, load_env, setup_logging
from .core import ChannelTalkChannel, HttpServer

logger = logging.getLogger("channel-talk")


def parse_args():
    p = argparse.ArgumentParser(
        description="Channel Talk Bridge: 채널톡 Team Chat 桥接服务",
    )
    p.add_argument(
        "--env", default=None,
        help=".env 文件路径 (默认: 当前目录下的 .env)",
    )
    p.add_argument(
        "--config", default=None,
        help="配置文件路径 (默认: config.yaml，可通过环境变量 CHANNEL_TALK_CONFIG 覆盖)",
    )
    p.add_argument(
        "--log-dir", default=None,
        help="日志输出目录，不指定则使用配置文件中的 log.dir",
    )
    p.add_argument(
        "--host", default=None,
        help="HTTP 服务监听地址 (默认取配置文件 server.host)",
    )
    p.add_argument(
        "--port", type=int, default=None,
        help="HTTP 服务监听端口 (默认取配置文件 server.port)",
    )
    return p.parse_args()


async def main():
    args = parse_args()

    load_env(args.env)
    config_path = args.config or os.environ.get("CHANNEL_TALK_CONFIG", "config.yaml")
    app_config = load_app_config(config_path, warn=False)
    setup_logging(log_dir=args.log_dir or app_config.log.dir, level=app_config.log.level.upper())

    # 命令行参数优先，其次配置文件
    host = args.host or app_config.server.host
    port = args.port or app_config.server.port

    # 配置文件修改后按 mtime 重新解析，无需重启即可换凭据
    channel = ChannelTalkChannel(ConfigResolver(config_path))
    for warning in channel.collect_warnings():
        logger.warning(warning)
    server = HttpServer(channel, host=host, port=port)

    abort = asyncio.Event()
    try:
        await server.start()
        await channel.start_account(server.on_message, abort)
    finally:
        abort.set()
        await server.stop()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()

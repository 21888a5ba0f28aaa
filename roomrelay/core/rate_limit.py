"""
roomrelay.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~

REST 查询接口的限流配置。

WebSocket 中继消息不做限流：``in`` / ``snap`` 是高频游戏帧，节奏由客户端决定。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，进程内存存储
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)

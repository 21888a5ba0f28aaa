"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 房间、假连接，以及读取会话发送队列的辅助函数。

房间逻辑的单元测试不启动写协程，而是直接读取会话队列里尚未写出的帧，
因此不需要真实的 WebSocket 连接。
"""
from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from fastapi import WebSocket  # noqa: E402

from roomrelay.core.rate_limit import limiter  # noqa: E402
from roomrelay.services.room import Room  # noqa: E402
from roomrelay.services.session import Session  # noqa: E402


def drain(session: Session) -> list[dict[str, Any]]:
    """取出会话队列中所有待发送的帧并解析为字典（跳过结束标记）。"""
    frames: list[dict[str, Any]] = []
    while not session._queue.empty():
        text = session._queue.get_nowait()
        if text is not None:
            frames.append(json.loads(text))
    return frames


@pytest.fixture()
def make_socket() -> Callable[[], MagicMock]:
    """返回一个生成假 WebSocket 的工厂，每次调用得到一个不同的连接句柄。"""

    def _make() -> MagicMock:
        return MagicMock(spec=WebSocket)

    return _make


@pytest.fixture()
def room() -> Room:
    """一个空房间。"""
    return Room("abc", queue_size=32)


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Iterator[None]:
    """每个用例开始前清空 REST 限流计数。"""
    limiter.reset()
    yield

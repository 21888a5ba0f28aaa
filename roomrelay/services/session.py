"""
roomrelay.services.session
~~~~~~~~~~~~~~~~~~~~~~~~~~

座位会话 —— 一条已入座的 WebSocket 连接。

每个 ``Session`` 持有一个有界发送队列和一个写协程（``pump``）：
房间侧的 ``send()`` 只是入队，从不等待网络写入，
因此一个慢速或已断开的连接不会拖住房间内其他人的广播。
"""
from __future__ import annotations

import asyncio

from fastapi import WebSocket

from roomrelay.core.logging import get_logger

logger = get_logger(__name__)


class Session:
    """一个座位上的活动连接。

    Attributes:
        websocket: 底层 WebSocket 连接。
        slot: 分配到的座位号，连接存续期间不变。
    """

    def __init__(self, websocket: WebSocket, slot: int, queue_size: int) -> None:
        self.websocket = websocket
        self._slot = slot
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def slot(self) -> int:
        return self._slot

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """尚未写出的帧数。"""
        return self._queue.qsize()

    def send(self, text: str) -> bool:
        """把一帧放入发送队列，立即返回。

        Returns:
            是否成功入队。会话已关闭或队列已满时返回 ``False``，该帧被丢弃。
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("发送队列已满，丢弃消息 | slot=%d", self._slot)
            return False
        return True

    def close(self) -> None:
        """停止接收新帧，并通知写协程在排空后退出。可重复调用。"""
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            # 连接即将结束，腾出位置给结束标记
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def pump(self) -> None:
        """写协程：按入队顺序把帧写到 WebSocket，直到收到结束标记或写入失败。"""
        while True:
            text = await self._queue.get()
            if text is None:
                return
            try:
                await self.websocket.send_text(text)
            except UnicodeError as e:
                # 单帧无法编码，跳过该帧，连接本身仍然可用
                logger.warning("帧编码失败，已丢弃 | slot=%d | %s", self._slot, e)
            except Exception as e:
                # 对端已断开，后续帧全部丢弃，清理交给读循环的断开路径
                logger.debug("写入失败，停止发送 | slot=%d | %s", self._slot, e)
                self._closed = True
                return

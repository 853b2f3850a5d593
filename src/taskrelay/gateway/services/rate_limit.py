"""RateLimiter -- 按用户的固定窗口限流

每个 key 在一个窗口内最多消耗 points 次；超限时抛出 RateLimitedError，
配置了 block_s 时在之后的 block_s 秒内持续拒绝。
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from taskrelay.core.exceptions import RateLimitedError

log = structlog.get_logger()


@dataclass
class _Window:
    remaining: int
    reset_at: float
    blocked_until: float | None = None


class RateLimiter:
    """内存限流器（单进程）"""

    def __init__(
        self,
        points: int,
        window_s: float = 60.0,
        *,
        block_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            points: 每个窗口允许的调用次数
            window_s: 窗口长度（秒）
            block_s: 超限后的封禁时长（秒），0 表示只等待窗口重置
            clock: 单调时钟，测试时可替换
        """
        if points < 1:
            raise ValueError("points must be >= 1")
        self._points = points
        self._window_s = window_s
        self._block_s = block_s
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def consume(self, key: str, points: int = 1) -> None:
        """消耗额度

        Raises:
            RateLimitedError: 额度不足或处于封禁期
        """
        now = self._clock()
        window = self._windows.get(key)

        if window is not None and window.blocked_until is not None:
            if window.blocked_until > now:
                raise RateLimitedError(window.blocked_until - now)
            window = None

        if window is None or window.reset_at <= now:
            window = _Window(remaining=self._points, reset_at=now + self._window_s)
            self._windows[key] = window

        if window.remaining < points:
            if self._block_s:
                window.blocked_until = now + self._block_s
                retry_after = self._block_s
            else:
                retry_after = window.reset_at - now
            log.warning("rate_limit_exceeded", key=key, retry_after_s=round(retry_after, 3))
            raise RateLimitedError(retry_after)

        window.remaining -= points

    def remaining(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None or window.reset_at <= self._clock():
            return self._points
        return window.remaining

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)

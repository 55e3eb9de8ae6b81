"""ClickUp APIのクライアント側レート制限。

ClickUpはトークン単位で毎分のリクエスト数を制限し、残量とリセット時刻を
``X-RateLimit-Remaining`` / ``X-RateLimit-Reset`` ヘッダーで通知する。
本モジュールは平常時の平準化（トークンバケット）と、残量0通知時の
リセット時刻までの一時停止を組み合わせて、429を受ける前に速度を落とす。
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Optional

from ticket_portal.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """毎秒 ``rate`` 個補充され、``burst`` 個まで貯まるトークンバケット。"""

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _take(self) -> float:
        """トークンを1つ取り出す。取り出せなければ必要な待機秒数を返す。"""
        now = self._clock()
        self._tokens = min(
            float(self.burst),
            self._tokens + (now - self._updated_at) * self.rate,
        )
        self._updated_at = now
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return 0.0
        return (1.0 - self._tokens) / self.rate

    async def acquire(self) -> None:
        """トークンが取れるまで待機する。"""
        while True:
            async with self._lock:
                wait = self._take()
            if wait <= 0:
                return
            await self._sleep(wait)


class ClickUpRateLimiter:
    """ClickUp APIトークン1つ分のレート制限状態。

    1つのAPIトークンを共有する全クライアントで同じインスタンスを使う。
    """

    def __init__(
        self,
        requests_per_minute: int,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """ClickUpRateLimiterを初期化する。

        Args:
            requests_per_minute: 1分あたりの許可リクエスト数。
            clock: UNIX時刻を返す関数。リセット時刻の比較に使う。
            sleep: 非同期スリープ関数。
        """
        self._clock = clock
        self._sleep = sleep
        self._paused_until: Optional[float] = None
        self._bucket = TokenBucket(
            rate=requests_per_minute / 60.0,
            burst=requests_per_minute,
            sleep=sleep,
        )

    @property
    def paused_until(self) -> Optional[float]:
        """残量0の通知を受けて停止している場合のリセット時刻（UNIX秒）。"""
        return self._paused_until

    async def acquire(self) -> None:
        """リクエスト送信前に呼び出す。

        残量0が通知されていればリセット時刻まで待機し、その後
        トークンバケットから1つ取得する。
        """
        if self._paused_until is not None:
            wait = self._paused_until - self._clock()
            if wait > 0:
                logger.info("ClickUp quota exhausted; pausing %.1fs until reset", wait)
                await self._sleep(wait)
            self._paused_until = None
        await self._bucket.acquire()

    def update_limits(self, headers: Mapping[str, str]) -> None:
        """レスポンスヘッダーから残量とリセット時刻を取り込む。

        残量が0になった場合のみ停止時刻を設定する。ヘッダーが無い、
        または数値でない場合は何もしない。

        Args:
            headers: HTTPレスポンスヘッダー。
        """
        try:
            remaining = int(headers["X-RateLimit-Remaining"])
            reset = float(headers["X-RateLimit-Reset"])
        except (KeyError, ValueError):
            return

        if remaining <= 0:
            self._paused_until = reset


# ---------------------------------------------------------------------------
# シングルトン
# ---------------------------------------------------------------------------

_rate_limiter: Optional[ClickUpRateLimiter] = None


def get_rate_limiter() -> ClickUpRateLimiter:
    """設定値で初期化したClickUpRateLimiterを返す。"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ClickUpRateLimiter(settings.CLICKUP_REQUESTS_PER_MINUTE)
    return _rate_limiter

"""リトライポリシーモジュール。

最大試行回数、バックオフ関数、リトライ可否判定を組み合わせた
汎用リトライポリシーを提供する。呼び出し側ごとにパラメータ化して使う。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ticket_portal.core.exceptions import TransientAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(
    base: float = 1.0,
    cap: float = 30.0,
) -> Callable[[int], float]:
    """指数バックオフ関数を生成する。

    Args:
        base: 1回目の失敗後の待機秒数。
        cap: 待機秒数の上限。

    Returns:
        失敗回数（1始まり）を受け取り待機秒数を返す関数。
    """

    def _backoff(attempt: int) -> float:
        return min(cap, base * (2 ** (attempt - 1)))

    return _backoff


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientAPIError)


@dataclass(frozen=True)
class RetryPolicy:
    """非同期呼び出しのリトライポリシー。

    例外に ``retry_after`` 属性（秒）があればバックオフより優先する。

    Attributes:
        max_attempts: 初回を含む最大試行回数。
        backoff: 失敗回数から待機秒数を求める関数。
        is_retryable: 例外がリトライ対象かを判定する関数。
        sleep: 待機に使うコルーチン関数（テストで差し替え可能）。
    """

    max_attempts: int = 4
    backoff: Callable[[int], float] = field(default_factory=exponential_backoff)
    is_retryable: Callable[[BaseException], bool] = _is_transient
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """ポリシーに従って ``func`` を呼び出す。

        Args:
            func: 呼び出すコルーチン関数。
            *args: ``func`` に渡す位置引数。
            **kwargs: ``func`` に渡すキーワード引数。

        Returns:
            ``func`` の戻り値。

        Raises:
            Exception: リトライ対象外の例外、または試行回数を使い切った
                最後の例外。
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                if not self.is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                retry_after = getattr(exc, "retry_after", None)
                delay = retry_after if retry_after is not None else self.backoff(attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await self.sleep(delay)

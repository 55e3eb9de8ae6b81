"""FastAPI依存性注入モジュール。

OAuth2スキーム、現在のユーザー取得、ClickUpクライアントを提供する。
データベースセッションは ``ticket_portal.database.get_session`` を再利用する。
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from ticket_portal.core.exceptions import AuthenticationError
from ticket_portal.core.security import verify_token
from ticket_portal.database import get_session  # noqa: F401 – re-export for convenience
from ticket_portal.external.clickup_client import ClickUpClient
from ticket_portal.services.field_extraction import canonicalize_email

# ---------------------------------------------------------------------------
# OAuth2 スキーム（トークンは外部IDプロバイダが発行する）
# ---------------------------------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class CurrentUser:
    """認証済みユーザー。チケットの所有判定はメールアドレスで行う。"""

    email: str


# ---------------------------------------------------------------------------
# 現在のユーザー取得
# ---------------------------------------------------------------------------

async def get_current_user(
    token: str = Depends(oauth2_scheme),
) -> CurrentUser:
    """アクセストークンから現在のユーザーを取得する。

    Args:
        token: OAuth2アクセストークン。

    Returns:
        認証済みユーザー。

    Raises:
        AuthenticationError: トークンが無効な場合。
    """
    try:
        payload = verify_token(token)
    except JWTError:
        raise AuthenticationError("Invalid or expired access token")

    return CurrentUser(email=canonicalize_email(payload["email"]))


# ---------------------------------------------------------------------------
# ClickUp クライアント
# ---------------------------------------------------------------------------

async def get_clickup_client() -> AsyncGenerator[ClickUpClient, None]:
    """リクエスト単位のClickUpクライアントを提供する。

    Raises:
        ConfigurationError: APIトークンが未設定の場合。
    """
    client = ClickUpClient()
    try:
        yield client
    finally:
        await client.close()

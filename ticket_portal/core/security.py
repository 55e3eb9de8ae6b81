"""JWTトークン検証モジュール。

アクセストークンは外部のIDプロバイダが発行し、本サービスは
python-joseによるHS256署名検証と ``email`` クレームの取得のみを行う。
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from ticket_portal.config import settings

ALGORITHM = "HS256"


def create_access_token(email: str) -> str:
    """アクセストークンを生成する。

    IDプロバイダと同じ形式のトークンを発行する。運用ツールやテストで使用する。

    Args:
        email: トークンの所有者メールアドレス。

    Returns:
        JWT文字列（HS256署名）。
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: dict = {
        "sub": email,
        "email": email,
        "type": "access",
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """JWTトークンを検証しペイロードを返す。

    Args:
        token: JWT文字列。

    Returns:
        デコード済みペイロード辞書。

    Raises:
        JWTError: トークンが無効、期限切れ、種別不一致、
            またはemailクレームが無い場合。
    """
    payload: dict = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
    )

    if payload.get("type") != "access":
        raise JWTError("Invalid token type: expected access")

    email = payload.get("email")
    if not isinstance(email, str) or "@" not in email:
        raise JWTError("Token has no email claim")

    return payload

"""共通Pydanticスキーマ。"""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field

MAX_PER_PAGE = 100


class PaginationMeta(BaseModel):
    """一覧APIのページ位置と総件数。

    ``total_pages`` と ``has_next`` は ``total`` から算出し、
    レスポンスにもそのまま含める。
    """

    page: int = Field(..., ge=1, description="現在のページ番号（1始まり）")
    per_page: int = Field(..., ge=1, le=MAX_PER_PAGE, description="1ページあたりの件数")
    total: int = Field(..., ge=0, description="総件数")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        # 切り上げ除算。0件なら0ページ
        return -(-self.total // self.per_page)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

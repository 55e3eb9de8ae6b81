"""フィールド抽出・正規化サービス。

ClickUpタスクの不均一なカスタムフィールド表現（ドロップダウンのインデックス、
ラベル配列、スカラー値）を、ローカルのチケットレコードへ平坦化する。
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Union

from ticket_portal.config import settings
from ticket_portal.external.clickup_client import ClickUpTask, CustomField

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.\w+")

_EMAIL_FIELD_NAMES = ("email", "e-mail", "contact")


# ---------------------------------------------------------------------------
# カスタムフィールド値（タグ付き共用体）
# ---------------------------------------------------------------------------

class FieldKind(str, enum.Enum):
    """カスタムフィールド値の種別タグ。"""

    SCALAR = "scalar"
    DROPDOWN = "dropdown"
    LABELS = "labels"


def _option_label(option: Any) -> str | None:
    if isinstance(option, dict):
        label = option.get("name") or option.get("label")
        return str(label) if label is not None else None
    if option is None:
        return None
    return str(option)


def _option_by_id(options: tuple[Any, ...], option_id: str) -> Any | None:
    for option in options:
        if isinstance(option, dict) and option.get("id") == option_id:
            return option
    return None


def _scalar_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        return value if value.strip() else None
    return None


@dataclass(frozen=True)
class ScalarValue:
    """文字列・数値・真偽値をそのまま保持する値。"""

    value: Any
    kind: FieldKind = dataclasses.field(default=FieldKind.SCALAR, init=False)

    def resolve(self) -> str | None:
        return _scalar_text(self.value)


@dataclass(frozen=True)
class DropdownValue:
    """選択肢配列へのインデックス（または選択肢ID）を保持する値。"""

    value: Any
    options: tuple[Any, ...] = ()
    kind: FieldKind = dataclasses.field(default=FieldKind.DROPDOWN, init=False)

    def resolve(self) -> str | None:
        """選択肢ラベルに解決する。

        範囲外のインデックスや選択肢配列の欠落時は値そのものを文字列で返す。
        """
        if self.value is None:
            return None
        if isinstance(self.value, int) and not isinstance(self.value, bool):
            if 0 <= self.value < len(self.options):
                label = _option_label(self.options[self.value])
                if label is not None:
                    return label
        elif isinstance(self.value, str):
            option = _option_by_id(self.options, self.value)
            if option is not None:
                return _option_label(option)
        return _scalar_text(self.value)


@dataclass(frozen=True)
class LabelsValue:
    """ラベル（選択肢IDまたはラベル辞書）の配列を保持する値。"""

    value: tuple[Any, ...]
    options: tuple[Any, ...] = ()
    kind: FieldKind = dataclasses.field(default=FieldKind.LABELS, init=False)

    def resolve(self) -> str | None:
        """ラベルをカンマ区切りの1文字列に結合する。"""
        labels: list[str] = []
        for item in self.value:
            if isinstance(item, dict):
                label = _option_label(item)
            elif isinstance(item, str):
                option = _option_by_id(self.options, item)
                label = _option_label(option) if option is not None else item
            else:
                label = _scalar_text(item)
            if label:
                labels.append(label)
        return ", ".join(labels) if labels else None


FieldValue = Union[ScalarValue, DropdownValue, LabelsValue]


def classify(field: CustomField) -> FieldValue:
    """カスタムフィールドを ``type`` タグに応じた値型へ変換する。

    Args:
        field: ClickUpのカスタムフィールド。

    Returns:
        ScalarValue、DropdownValue、LabelsValue のいずれか。
    """
    options = tuple((field.type_config or {}).get("options") or ())
    if field.type == "drop_down":
        return DropdownValue(value=field.value, options=options)
    if field.type == "labels" or isinstance(field.value, list):
        items = field.value if isinstance(field.value, list) else ()
        return LabelsValue(value=tuple(items), options=options)
    return ScalarValue(value=field.value)


def resolve_field(field: CustomField | None) -> str | None:
    """カスタムフィールドを表示用文字列に解決する。未設定ならNone。"""
    if field is None:
        return None
    return classify(field).resolve()


# ---------------------------------------------------------------------------
# フィールド検索
# ---------------------------------------------------------------------------

def find_field_by_id(
    fields: list[CustomField],
    field_id: str,
) -> CustomField | None:
    """フィールドIDの完全一致で検索する。"""
    for field in fields:
        if field.id == field_id:
            return field
    return None


def iter_fields_by_name(
    fields: list[CustomField],
    *needles: str,
) -> Iterator[CustomField]:
    """フィールド名に ``needles`` のいずれかを含むフィールドを順に返す。

    大文字小文字は区別しない。
    """
    lowered = [needle.lower() for needle in needles]
    for field in fields:
        name = (field.name or "").lower()
        if any(needle in name for needle in lowered):
            yield field


def find_value_by_name(fields: list[CustomField], *needles: str) -> str | None:
    """名前が部分一致するフィールドのうち、最初に値を持つものの値を返す。"""
    for field in iter_fields_by_name(fields, *needles):
        value = resolve_field(field)
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# 値の変換
# ---------------------------------------------------------------------------

def parse_epoch_ms(value: Any) -> datetime | None:
    """エポックミリ秒（文字列または整数）をUTC日時に変換する。

    Args:
        value: エポックミリ秒。

    Returns:
        タイムゾーン付き日時。解釈できない場合はNone。
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        millis = int(value)
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def canonicalize_email(email: str, mode: str | None = None) -> str:
    """メールアドレスを設定に従って正規化する。

    Args:
        email: メールアドレス。
        mode: ``lower`` は小文字化のみ、``lower_strip`` は前後の空白除去も行う。
            省略時は設定値。

    Returns:
        正規化済みメールアドレス。
    """
    mode = mode or settings.EMAIL_CANONICALIZATION
    if mode == "lower_strip":
        return email.strip().lower()
    return email.lower()


def _parse_size(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _is_checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    if isinstance(value, (int, float)):
        return value == 1
    return False


# ---------------------------------------------------------------------------
# 正規化
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionConfig:
    """正規化に使うフィールドIDとメール関連の設定。"""

    ticket_id_field_id: str
    email_field_id: str
    release_notes_field_id: str
    email_placeholder: str
    email_canonicalization: str

    @classmethod
    def from_settings(cls) -> ExtractionConfig:
        return cls(
            ticket_id_field_id=settings.CLICKUP_TICKET_ID_FIELD_ID,
            email_field_id=settings.CLICKUP_EMAIL_FIELD_ID,
            release_notes_field_id=settings.CLICKUP_RELEASE_NOTES_FIELD_ID,
            email_placeholder=settings.EMAIL_PLACEHOLDER,
            email_canonicalization=settings.EMAIL_CANONICALIZATION,
        )


@dataclass
class TicketRecord:
    """正規化済みチケット。``tickets`` テーブルの1行に対応する（synced_at を除く）。"""

    id: str
    title: str
    status: str
    priority: str
    user_email: str
    remote_created_at: datetime
    remote_updated_at: datetime
    ticket_code: str | None = None
    description: str | None = None
    business_unit: str | None = None
    jira_status: str | None = None
    jira_assignee: str | None = None
    jira_url: str | None = None
    release_notes: bool = False
    due_date: datetime | None = None

    def as_row(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class AttachmentRecord:
    """正規化済み添付ファイル。``attachments`` テーブルの1行に対応する。"""

    id: str
    ticket_id: str
    title: str
    url: str
    extension: str | None = None
    size: int | None = None
    date_added: datetime | None = None

    def as_row(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def extract_email(
    task: ClickUpTask,
    config: ExtractionConfig,
) -> str:
    """チケット所有者のメールアドレスを優先順位付きで導出する。

    1. メールフィールドID完全一致で "@" を含む値
    2. 名前が email / e-mail / contact に部分一致し "@" を含む値
    3. 説明文中の最初のメールアドレス
    4. プレースホルダー

    Args:
        task: ClickUpタスク。
        config: 抽出設定。

    Returns:
        正規化済みメールアドレス。
    """
    fields = task.custom_fields or []

    candidate = resolve_field(find_field_by_id(fields, config.email_field_id))
    if not candidate or "@" not in candidate:
        candidate = None
        for field in iter_fields_by_name(fields, *_EMAIL_FIELD_NAMES):
            value = resolve_field(field)
            if value and "@" in value:
                candidate = value
                break

    if candidate is None and task.description:
        match = _EMAIL_PATTERN.search(task.description)
        if match:
            candidate = match.group(0)

    if candidate is None:
        logger.warning(
            "Task %s has no discoverable owner email, using placeholder",
            task.id,
        )
        candidate = config.email_placeholder

    return canonicalize_email(candidate, config.email_canonicalization)


def normalize(
    task: ClickUpTask | dict[str, Any],
    config: ExtractionConfig | None = None,
) -> TicketRecord:
    """ClickUpタスクをチケットレコードに正規化する。

    不正な日時や欠落したフィールドは安全な既定値で補い、例外は送出しない
    （``task`` 自体の構造検証エラーを除く）。

    Args:
        task: ClickUpタスク（モデルまたは生の辞書）。
        config: 抽出設定。省略時は設定値から生成。

    Returns:
        正規化済みチケットレコード。
    """
    if not isinstance(task, ClickUpTask):
        task = ClickUpTask.model_validate(task)
    config = config or ExtractionConfig.from_settings()
    fields = task.custom_fields or []

    created_at = parse_epoch_ms(task.date_created)
    updated_at = parse_epoch_ms(task.date_updated)
    if created_at is None:
        created_at = updated_at or EPOCH
    if updated_at is None:
        updated_at = created_at

    release_field = find_field_by_id(fields, config.release_notes_field_id)

    return TicketRecord(
        id=task.id,
        ticket_code=resolve_field(find_field_by_id(fields, config.ticket_id_field_id)),
        title=task.name or "",
        description=task.description or None,
        status=(task.status.status if task.status else None) or "unknown",
        priority=(task.priority.priority if task.priority else None) or "normal",
        user_email=extract_email(task, config),
        business_unit=find_value_by_name(fields, "business unit"),
        jira_status=find_value_by_name(fields, "jira status"),
        jira_assignee=find_value_by_name(fields, "jira assignee"),
        jira_url=find_value_by_name(fields, "jira url", "jira link"),
        release_notes=_is_checked(release_field.value) if release_field else False,
        due_date=parse_epoch_ms(task.due_date),
        remote_created_at=created_at,
        remote_updated_at=updated_at,
    )


def extract_attachments(task: ClickUpTask) -> list[AttachmentRecord]:
    """タスクの添付ファイル一覧を正規化する。IDかURLが無いものは除外する。"""
    records: list[AttachmentRecord] = []
    for raw in task.attachments or []:
        attachment_id = raw.get("id")
        url = raw.get("url")
        if not attachment_id or not url:
            continue
        size = raw.get("size")
        records.append(
            AttachmentRecord(
                id=str(attachment_id),
                ticket_id=task.id,
                title=raw.get("title") or str(attachment_id),
                url=url,
                extension=raw.get("extension") or None,
                size=_parse_size(size),
                date_added=parse_epoch_ms(raw.get("date")),
            )
        )
    return records

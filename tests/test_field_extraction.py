"""Tests for ``ticket_portal.services.field_extraction``."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ticket_portal.external.clickup_client import ClickUpTask, CustomField
from ticket_portal.services.field_extraction import (
    EPOCH,
    DropdownValue,
    ExtractionConfig,
    FieldKind,
    LabelsValue,
    ScalarValue,
    canonicalize_email,
    classify,
    extract_attachments,
    normalize,
    parse_epoch_ms,
    resolve_field,
)

EMAIL_FIELD_ID = "e041d530-cb4e-4fd1-9759-9cb3f9a9cbe4"
TICKET_ID_FIELD_ID = "faadba80-e7bc-474e-b01c-1a1c965c9a76"
RELEASE_NOTES_FIELD_ID = "060ed832-9a39-4143-8c9b-571b346eba15"


def _field(**kwargs) -> CustomField:
    return CustomField.model_validate(kwargs)


# ---------------------------------------------------------------------------
# Field value resolution
# ---------------------------------------------------------------------------


class TestClassify:
    """Custom fields are tagged by their ``type``."""

    def test_drop_down_is_dropdown(self) -> None:
        value = classify(_field(type="drop_down", value=0))
        assert isinstance(value, DropdownValue)
        assert value.kind is FieldKind.DROPDOWN

    def test_labels_is_labels(self) -> None:
        value = classify(_field(type="labels", value=["a"]))
        assert isinstance(value, LabelsValue)
        assert value.kind is FieldKind.LABELS

    def test_list_value_without_type_is_labels(self) -> None:
        assert isinstance(classify(_field(value=["a", "b"])), LabelsValue)

    def test_everything_else_is_scalar(self) -> None:
        value = classify(_field(type="short_text", value="hello"))
        assert isinstance(value, ScalarValue)
        assert value.kind is FieldKind.SCALAR


class TestDropdown:
    """Dropdown index resolution."""

    def test_index_resolves_to_label(self) -> None:
        field = _field(
            type="drop_down",
            value=1,
            type_config={"options": ["A", "B", "C"]},
        )
        assert resolve_field(field) == "B"

    def test_out_of_range_index_falls_back_to_literal(self) -> None:
        field = _field(
            type="drop_down",
            value=9,
            type_config={"options": ["A", "B", "C"]},
        )
        assert resolve_field(field) == "9"

    def test_missing_options_falls_back_to_literal(self) -> None:
        assert resolve_field(_field(type="drop_down", value=2)) == "2"

    def test_option_dicts_use_name(self) -> None:
        field = _field(
            type="drop_down",
            value=0,
            type_config={"options": [{"id": "o1", "name": "Finance", "orderindex": 0}]},
        )
        assert resolve_field(field) == "Finance"

    def test_option_id_value_resolves_to_name(self) -> None:
        field = _field(
            type="drop_down",
            value="o2",
            type_config={
                "options": [
                    {"id": "o1", "name": "Finance"},
                    {"id": "o2", "name": "Logistics"},
                ]
            },
        )
        assert resolve_field(field) == "Logistics"

    def test_negative_index_is_not_wrapped(self) -> None:
        field = _field(
            type="drop_down",
            value=-1,
            type_config={"options": ["A", "B"]},
        )
        assert resolve_field(field) == "-1"

    def test_unset_dropdown_is_none(self) -> None:
        assert resolve_field(_field(type="drop_down", value=None)) is None


class TestLabels:
    """Label arrays are joined into one string."""

    def test_label_ids_resolve_and_join(self) -> None:
        field = _field(
            type="labels",
            value=["l1", "l3"],
            type_config={
                "options": [
                    {"id": "l1", "label": "Urgent"},
                    {"id": "l2", "label": "Billing"},
                    {"id": "l3", "label": "VIP"},
                ]
            },
        )
        assert resolve_field(field) == "Urgent, VIP"

    def test_label_dicts_join(self) -> None:
        field = _field(type="labels", value=[{"label": "x"}, {"name": "y"}])
        assert resolve_field(field) == "x, y"

    def test_unknown_ids_are_kept_as_text(self) -> None:
        assert resolve_field(_field(type="labels", value=["raw"])) == "raw"

    def test_empty_labels_are_none(self) -> None:
        assert resolve_field(_field(type="labels", value=[])) is None


class TestScalar:
    """Scalar text conversion."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("text", "text"),
            ("   ", None),
            (42, "42"),
            (3.0, "3"),
            (2.5, "2.5"),
            (True, "true"),
            (None, None),
        ],
    )
    def test_scalar_values(self, value, expected) -> None:
        assert resolve_field(_field(type="short_text", value=value)) == expected


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


class TestParseEpochMs:
    """Epoch-millisecond parsing."""

    def test_string_millis(self) -> None:
        assert parse_epoch_ms("1700000000000") == datetime(
            2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc
        )

    def test_int_millis(self) -> None:
        assert parse_epoch_ms(0) == EPOCH

    @pytest.mark.parametrize("value", [None, "", "soon", "12.5", True, "9" * 30])
    def test_malformed_is_none(self, value) -> None:
        assert parse_epoch_ms(value) is None


# ---------------------------------------------------------------------------
# Email derivation
# ---------------------------------------------------------------------------


class TestEmailChain:
    """Owner email fallback chain."""

    def test_email_field_id_wins(self, make_task) -> None:
        task = make_task(
            description="contact: other@example.com",
            custom_fields=[
                {"id": "x", "name": "Contact", "value": "second@example.com"},
                {"id": EMAIL_FIELD_ID, "name": "Whatever", "value": "Owner@Example.com"},
            ],
        )
        assert normalize(task).user_email == "owner@example.com"

    def test_email_field_without_at_is_ignored(self, make_task) -> None:
        task = make_task(
            custom_fields=[
                {"id": EMAIL_FIELD_ID, "name": "Email", "value": "n/a"},
                {"id": "y", "name": "Contact person", "value": "bob@example.com"},
            ],
        )
        assert normalize(task).user_email == "bob@example.com"

    def test_name_matched_field(self, make_task) -> None:
        task = make_task(
            custom_fields=[
                {"id": "a", "name": "Customer E-Mail", "value": "carol@example.com"},
            ],
        )
        assert normalize(task).user_email == "carol@example.com"

    def test_description_regex(self, make_task) -> None:
        task = make_task(email=None, description="contact: ops@example.com")
        assert normalize(task).user_email == "ops@example.com"

    def test_placeholder_when_nothing_matches(self, make_task) -> None:
        task = make_task(email=None, description="no owner here")
        assert normalize(task).user_email == "unknown@unknown.com"

    def test_placeholder_when_description_missing(self, make_task) -> None:
        task = make_task(email=None)
        assert normalize(task).user_email == "unknown@unknown.com"


class TestCanonicalizeEmail:
    """Email canonicalisation is a configuration point."""

    def test_lower_keeps_whitespace(self) -> None:
        assert canonicalize_email(" A@B.COM ", "lower") == " a@b.com "

    def test_lower_strip(self) -> None:
        assert canonicalize_email(" A@B.COM ", "lower_strip") == "a@b.com"

    def test_mode_applies_in_normalize(self, make_task) -> None:
        config = ExtractionConfig(
            ticket_id_field_id=TICKET_ID_FIELD_ID,
            email_field_id=EMAIL_FIELD_ID,
            release_notes_field_id=RELEASE_NOTES_FIELD_ID,
            email_placeholder="nobody@example.com",
            email_canonicalization="lower_strip",
        )
        task = make_task(email="  Dave@Example.com ")
        assert normalize(task, config).user_email == "dave@example.com"


# ---------------------------------------------------------------------------
# normalize
# ---------------------------------------------------------------------------


class TestNormalize:
    """Full task normalisation."""

    def test_basic_fields(self, make_task) -> None:
        task = make_task(
            "abc123",
            name="VPN down",
            description="Cannot connect",
            due_date="1700086400000",
            custom_fields=[
                {"id": EMAIL_FIELD_ID, "value": "alice@example.com"},
                {"id": TICKET_ID_FIELD_ID, "name": "Ticket ID", "value": 1042},
                {"id": RELEASE_NOTES_FIELD_ID, "name": "Release", "value": "true"},
                {
                    "id": "bu",
                    "name": "Business Unit",
                    "type": "drop_down",
                    "value": 1,
                    "type_config": {"options": [{"name": "Retail"}, {"name": "Wholesale"}]},
                },
                {"id": "js", "name": "JIRA Status", "value": "In Review"},
                {"id": "ja", "name": "Jira Assignee", "value": "erin"},
                {"id": "jl", "name": "Jira Link", "value": "https://jira/PRJ-1"},
            ],
        )
        record = normalize(task)

        assert record.id == "abc123"
        assert record.title == "VPN down"
        assert record.description == "Cannot connect"
        assert record.status == "open"
        assert record.priority == "high"
        assert record.ticket_code == "1042"
        assert record.release_notes is True
        assert record.business_unit == "Wholesale"
        assert record.jira_status == "In Review"
        assert record.jira_assignee == "erin"
        assert record.jira_url == "https://jira/PRJ-1"
        assert record.due_date == datetime(2023, 11, 15, 22, 13, 20, tzinfo=timezone.utc)

    def test_defaults_for_missing_status_and_priority(self, make_task) -> None:
        record = normalize(make_task(status=None, priority=None))
        assert record.status == "unknown"
        assert record.priority == "normal"

    def test_malformed_due_date_is_none(self, make_task) -> None:
        assert normalize(make_task(due_date="not-a-date")).due_date is None

    def test_created_falls_back_to_updated(self, make_task) -> None:
        task = make_task(date_created="garbage", date_updated="1700000000000")
        record = normalize(task)
        assert record.remote_created_at == parse_epoch_ms("1700000000000")
        assert record.remote_updated_at == record.remote_created_at

    def test_both_timestamps_malformed_use_epoch(self, make_task) -> None:
        record = normalize(make_task(date_created=None, date_updated="x"))
        assert record.remote_created_at == EPOCH
        assert record.remote_updated_at == EPOCH

    def test_release_flag_false_when_field_missing(self, make_task) -> None:
        assert normalize(make_task()).release_notes is False

    @pytest.mark.parametrize(("value", "expected"), [(True, True), (1, True), ("false", False), (None, False)])
    def test_release_flag_values(self, make_task, value, expected) -> None:
        task = make_task(
            custom_fields=[{"id": RELEASE_NOTES_FIELD_ID, "value": value}],
        )
        assert normalize(task).release_notes is expected

    def test_accepts_model_instance(self, make_task) -> None:
        task = ClickUpTask.model_validate(make_task("m1"))
        assert normalize(task).id == "m1"

    def test_missing_name_becomes_empty_title(self, make_task) -> None:
        assert normalize(make_task(name=None)).title == ""

    def test_as_row_matches_columns(self, make_task) -> None:
        row = normalize(make_task()).as_row()
        assert row["id"] == "task-1"
        assert "synced_at" not in row


class TestExtractAttachments:
    """Attachment normalisation."""

    def test_valid_attachments_are_kept(self, make_task) -> None:
        task = ClickUpTask.model_validate(
            make_task(
                "t1",
                attachments=[
                    {
                        "id": "att-1",
                        "title": "log.txt",
                        "url": "https://files/log.txt",
                        "extension": "txt",
                        "size": "2048",
                        "date": "1700000000000",
                    },
                    {"id": "att-2", "title": "no url"},
                    {"url": "https://files/no-id"},
                ],
            )
        )
        records = extract_attachments(task)

        assert len(records) == 1
        assert records[0].id == "att-1"
        assert records[0].ticket_id == "t1"
        assert records[0].size == 2048
        assert records[0].date_added == parse_epoch_ms("1700000000000")

"""Tests for record grouping."""

from datetime import date

from joel.grouping import (
    create_field_grouping,
    create_reference_grouping,
    format_grouped_records,
    format_reference_title,
    group_records_by,
    order_grouped_entries,
)


def leaf(records, config):
    return "".join(f"- {record.surname}\n" for record in records)


def separator(level):
    return "\n---\n" if level == 0 else "\n"


class TestGroupRecordsBy:
    """Tests for group_records_by."""

    def test_ids_are_trimmed_and_deduplicated(self, make_record):
        record = make_record()
        config = create_field_grouping(lambda r: [" A ", "A", None, "B", ""])

        assert group_records_by([record], config) == {"A": [record], "B": [record]}

    def test_fallback_label(self, make_record):
        record = make_record()
        config = create_field_grouping(lambda r: None, fallback_label="Autres")

        assert group_records_by([record], config) == {"Autres": [record]}

    def test_records_without_id_are_dropped(self, make_record):
        config = create_field_grouping(lambda r: "  ")

        assert group_records_by([make_record()], config) == {}

    def test_first_seen_order(self, make_record):
        first = make_record(surname="B")
        second = make_record(surname="A")
        config = create_field_grouping(lambda r: r.surname)

        assert list(group_records_by([first, second], config)) == ["B", "A"]


class TestOrderGroupedEntries:
    """Tests for order_grouped_entries."""

    def test_insertion_order_by_default(self, make_record):
        grouped = {"b": [make_record()], "a": [make_record()]}
        assert [key for key, _ in order_grouped_entries(grouped)] == ["b", "a"]

    def test_sort_fn_drops_unknown_ids(self, make_record):
        grouped = {"b": [make_record()], "a": [make_record()]}
        entries = order_grouped_entries(grouped, lambda ids: ["z"] + sorted(ids))
        assert [key for key, _ in entries] == ["a", "b"]


class TestFormatGroupedRecords:
    """Tests for format_grouped_records."""

    def test_default_title_and_separators(self, make_record):
        config = create_field_grouping(lambda r: r.surname)
        grouped = group_records_by(
            [make_record(surname="X"), make_record(surname="Y"), make_record(surname="Z")],
            config,
        )

        text = format_grouped_records(grouped, config, True, leaf, separator)

        assert text == "👉 X\n- X\n\n---\n👉 Y\n- Y\n\n---\n👉 Z\n- Z\n"
        assert text.count("---") == 2

    def test_nested_grouping(self, make_record):
        config = create_field_grouping(
            lambda r: r.order_type,
            sub_grouping=create_field_grouping(lambda r: r.surname),
        )
        records = [
            make_record(surname="A", order_type="nomination"),
            make_record(surname="B", order_type="nomination"),
        ]

        text = format_grouped_records(
            group_records_by(records, config), config, True, leaf, separator
        )

        assert text == "👉 nomination\n👉 A\n- A\n\n👉 B\n- B\n"

    def test_references_newest_first(self, make_record):
        config = create_reference_grouping()
        old = make_record(source_id="OLD", source_date=date(2024, 1, 5))
        new = make_record(source_id="NEW", source_date=date(2024, 2, 1))

        text = format_grouped_records(
            group_records_by([old, new], config), config, True, leaf, separator
        )

        assert text.index("NEW") < text.index("OLD")


class TestFormatReferenceTitle:
    """Tests for publication titles."""

    def test_markdown_link(self, make_record):
        record = make_record(source_id="JORFTEXT1", source_date=date(2023, 1, 15))

        title = format_reference_title("JORFTEXT1", [record], markdown_links=True)

        assert title == (
            "📰 JORF du 15 janvier 2023 - "
            "[cliquez ici](https://www.legifrance.gouv.fr/jorf/id/JORFTEXT1)\n"
        )

    def test_plain_url(self, make_record):
        record = make_record(source_id="JORFTEXT1", source_date=date(2023, 8, 1))

        title = format_reference_title("JORFTEXT1", [record], markdown_links=False)

        assert title == (
            "📰 JORF du 1 août 2023 - https://www.legifrance.gouv.fr/jorf/id/JORFTEXT1\n"
        )

"""Grouping of matched records into nested, titled digest sections."""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .models import GazetteRecord
from .utils import date_to_french_string

GroupId = Union[str, Iterable[Optional[str]], None]
GroupedRecords = Dict[str, List[GazetteRecord]]
TitleFormatter = Callable[..., str]
SortGroupIds = Callable[[List[str], GroupedRecords], List[str]]

LEGIFRANCE_JORF_URL = "https://www.legifrance.gouv.fr/jorf/id/"


@dataclass
class GroupingConfig:
    """How to split records into groups and render each group's title.

    get_group_id may return one id, several ids (the record lands in each
    group) or None. format_group_title is called with keyword arguments
    group_id, records and markdown_links.
    """

    get_group_id: Callable[[GazetteRecord], GroupId]
    fallback_label: Optional[str] = None
    format_group_title: Optional[TitleFormatter] = None
    sort_group_ids: Optional[SortGroupIds] = None
    sub_grouping: Optional["GroupingConfig"] = None
    omit_organisation_names: bool = False


LeafFormatter = Callable[[List[GazetteRecord], GroupingConfig], str]
SeparatorSelector = Callable[[int], str]


def _normalize_group_ids(raw: GroupId) -> List[str]:
    if raw is None:
        return []
    values = [raw] if isinstance(raw, str) else list(raw)
    ids = []
    for value in values:
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed and trimmed not in ids:
            ids.append(trimmed)
    return ids


def group_records_by(
    records: Iterable[GazetteRecord], config: GroupingConfig
) -> GroupedRecords:
    """Group records by id, keeping first-seen group order."""
    grouped: GroupedRecords = {}
    for record in records:
        group_ids = _normalize_group_ids(config.get_group_id(record))
        if not group_ids:
            if config.fallback_label is None:
                continue
            group_ids = [config.fallback_label]
        for group_id in group_ids:
            grouped.setdefault(group_id, []).append(record)
    return grouped


def order_grouped_entries(
    grouped: GroupedRecords,
    sort_fn: Optional[Callable[[List[str]], List[str]]] = None,
) -> List[Tuple[str, List[GazetteRecord]]]:
    """Entries in insertion order, or in the order sort_fn gives the ids."""
    group_ids = list(grouped)
    if sort_fn is not None:
        group_ids = [group_id for group_id in sort_fn(group_ids) if group_id in grouped]
    return [(group_id, grouped[group_id]) for group_id in group_ids]


def format_grouped_records(
    grouped: GroupedRecords,
    config: GroupingConfig,
    markdown_links: bool,
    leaf_formatter: LeafFormatter,
    separator_selector: SeparatorSelector,
    level: int = 0,
) -> str:
    """Render groups recursively; separators go between siblings only."""
    sort_fn = None
    if config.sort_group_ids is not None:
        sort_group_ids = config.sort_group_ids

        def sort_fn(group_ids: List[str]) -> List[str]:
            return sort_group_ids(group_ids, grouped)

    blocks = []
    for group_id, records in order_grouped_entries(grouped, sort_fn):
        if config.format_group_title is not None:
            title = config.format_group_title(
                group_id=group_id, records=records, markdown_links=markdown_links
            )
        else:
            title = f"👉 {group_id}\n"

        if config.sub_grouping is not None:
            body = format_grouped_records(
                group_records_by(records, config.sub_grouping),
                config.sub_grouping,
                markdown_links,
                leaf_formatter,
                separator_selector,
                level + 1,
            )
        else:
            body = leaf_formatter(records, config)

        blocks.append(title + body)

    return separator_selector(level).join(blocks)


def create_field_grouping(
    getter: Callable[[GazetteRecord], GroupId],
    fallback_label: Optional[str] = None,
    omit_organisation_names: bool = False,
    format_group_title: Optional[TitleFormatter] = None,
    sub_grouping: Optional[GroupingConfig] = None,
) -> GroupingConfig:
    """Group by any field extracted from a record."""
    return GroupingConfig(
        get_group_id=getter,
        fallback_label=fallback_label,
        format_group_title=format_group_title,
        sub_grouping=sub_grouping,
        omit_organisation_names=omit_organisation_names,
    )


def reference_url(source_id: str) -> str:
    return f"{LEGIFRANCE_JORF_URL}{source_id}"


def format_reference_title(
    group_id: str, records: List[GazetteRecord], markdown_links: bool
) -> str:
    """Publication title: source, French date and a link to the text."""
    first = records[0]
    published = date_to_french_string(first.source_date)
    url = reference_url(group_id)
    link = f"[cliquez ici]({url})" if markdown_links else url
    return f"📰 {first.source_name} du {published} - {link}\n"


def sort_references_by_date(group_ids: List[str], grouped: GroupedRecords) -> List[str]:
    """Most recent publication first; ties keep their order."""
    return sorted(
        group_ids,
        key=lambda group_id: max(record.source_date for record in grouped[group_id]),
        reverse=True,
    )


def create_reference_grouping(
    format_group_title: Optional[TitleFormatter] = None,
    omit_organisation_names: bool = False,
) -> GroupingConfig:
    """Group by publication reference, newest publication first."""
    return GroupingConfig(
        get_group_id=lambda record: record.source_id,
        format_group_title=format_group_title or format_reference_title,
        sort_group_ids=sort_references_by_date,
        omit_organisation_names=omit_organisation_names,
    )

"""Digest text for matched records, in French."""

from typing import Dict, Iterable, List, Optional

from .function_tags import FunctionTag
from .grouping import (
    GroupingConfig,
    create_field_grouping,
    create_reference_grouping,
    format_grouped_records,
    group_records_by,
)
from .models import GazetteRecord, NotificationType, UserMatches

GROUP_SEPARATOR = "===================="
SECTION_SEPARATOR = f"\n{GROUP_SEPARATOR}\n\n"

# order type -> (template, masculine, feminine); {} receives the agreed participle
ORDER_TYPE_TEXTS = {
    "nomination": ("A été _{}_", "nommé", "nommée"),
    "réintégration": ("A été _{}_", "réintégré", "réintégrée"),
    "cessation de fonction": ("A _{}_", "cessé ses fonctions", "cessé ses fonctions"),
    "affectation": ("A été _{}_", "affecté", "affectée"),
    "délégation de signature": (
        "A reçu une _{}_",
        "délégation de signature",
        "délégation de signature",
    ),
    "promotion": ("A été _{}_", "promu", "promue"),
    "admission": ("A été _{}_", "admis", "admise"),
    "détachement": ("A été _{}_", "détaché", "détachée"),
    "élection": ("A été _{}_", "élu", "élue"),
    "titularisation": ("A été _{}_", "titularisé", "titularisée"),
    "démission": ("A _{}_", "démissionné", "démissionné"),
    "inscription": ("A été _{}_", "inscrit", "inscrite"),
    "désignation": ("A été _{}_", "désigné", "désignée"),
    "radiation": ("A été _{}_", "radié", "radiée"),
    "renouvellement": ("A été _{}_", "renouvelé", "renouvelée"),
    "reconduction": ("A été _{}_ dans ses fonctions", "reconduit", "reconduite"),
    "admissibilité": ("A été _{}_", "admissible", "admissible"),
    "charge": ("A été _{}_ de", "chargé", "chargée"),
    "intégration": ("A été _{}_", "intégré", "intégrée"),
    "habilitation": ("A été _{}_", "habilité", "habilitée"),
}


def plural(count: int) -> str:
    return "s" if count > 1 else ""


def text_type_ordre(order_type: str, sex: Optional[str] = None) -> str:
    """One line describing what happened to the person, e.g. "📝 A été _nommée_"."""
    entry = ORDER_TYPE_TEXTS.get(order_type.strip().lower())
    if entry is None:
        return f"📝 {order_type[:1].upper()}{order_type[1:]}\n"
    template, masculine, feminine = entry
    return "📝 " + template.format(feminine if sex == "F" else masculine) + "\n"


def format_record(
    record: GazetteRecord,
    omit_organisation_names: bool = False,
    display_name: bool = True,
) -> str:
    text = ""
    if display_name:
        text += f"👤 *{record.display_name}*\n"
    if record.order_type:
        text += text_type_ordre(record.order_type, record.sex)
    if record.organisations and not omit_organisation_names:
        text += "🏛️ " + ", ".join(org.name for org in record.organisations) + "\n"
    return text


def format_record_listing(records: List[GazetteRecord], config: GroupingConfig) -> str:
    """Leaf formatter: one block per record, blank line between records."""
    return (
        "\n".join(
            format_record(record, config.omit_organisation_names) for record in records
        )
        + "\n"
    )


def dedupe_records(records: Iterable[GazetteRecord]) -> List[GazetteRecord]:
    """Drop repeated publication items, keeping first occurrences in order."""
    seen = set()
    unique = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


def group_separator(level: int) -> str:
    return SECTION_SEPARATOR if level == 0 else "\n"


def _format_by_reference(records: List[GazetteRecord], markdown_links: bool) -> str:
    config = create_reference_grouping()
    return format_grouped_records(
        group_records_by(dedupe_records(records), config),
        config,
        markdown_links,
        format_record_listing,
        group_separator,
        level=1,
    )


def _format_keyed_groups(
    grouped: Dict[str, List[GazetteRecord]],
    title_for: Dict[str, str],
    markdown_links: bool,
) -> str:
    """Render {group key: records} with one titled block per key."""

    def format_group_title(group_id: str, records: List[GazetteRecord], **_) -> str:
        count = len(records)
        return (
            f"Nouvelle{plural(count)} publication{plural(count)} pour "
            f"{title_for[group_id]}\n\n"
        )

    config = create_field_grouping(
        lambda record: None,
        format_group_title=format_group_title,
        sub_grouping=create_reference_grouping(omit_organisation_names=True),
    )
    deduped = {key: dedupe_records(records) for key, records in grouped.items()}
    return format_grouped_records(
        deduped, config, markdown_links, format_record_listing, group_separator
    )


def format_people_section(matches: UserMatches, markdown_links: bool) -> str:
    records = matches.records_for(NotificationType.PEOPLE)
    count = len(records)
    header = (
        f"📢 Nouvelle{plural(count)} publication{plural(count)} "
        "parmi les personnes que vous suivez :\n\n"
    )
    return header + _format_by_reference(records, markdown_links)


def format_names_section(matches: UserMatches, markdown_links: bool) -> str:
    count = len(matches.new_names)
    text = (
        f"📢 Nouvelle{plural(count)} publication{plural(count)} "
        "parmi les noms que vous suivez manuellement :\n\n"
    )
    blocks = [
        _format_by_reference(match.records, markdown_links)
        + f"Vous suivez maintenant *{match.person.display_name}* ✅"
        for match in matches.new_names
    ]
    return text + "\n\n".join(blocks) + "\n"


def format_functions_section(matches: UserMatches, markdown_links: bool) -> str:
    titles = {}
    for tag in matches.functions:
        try:
            label = FunctionTag(tag).label
        except ValueError:
            label = tag
        titles[tag] = f"la fonction *{label}*"
    return (
        "📢 Nouvelles publications parmi les fonctions que vous suivez :\n\n"
        + _format_keyed_groups(matches.functions, titles, markdown_links)
    )


def format_organisations_section(matches: UserMatches, markdown_links: bool) -> str:
    names = matches.organisation_names
    titles = {
        organisation_id: f"*{names.get(organisation_id, organisation_id)}*"
        for organisation_id in matches.organisations
    }
    return (
        "📢 Nouvelles publications parmi les organisations que vous suivez :\n\n"
        + _format_keyed_groups(matches.organisations, titles, markdown_links)
    )


SECTION_FORMATTERS = {
    NotificationType.PEOPLE: format_people_section,
    NotificationType.NAME: format_names_section,
    NotificationType.FUNCTION: format_functions_section,
    NotificationType.ORGANISATION: format_organisations_section,
}


def build_digest(matches: UserMatches, markdown_links: bool = True) -> str:
    """One combined message covering every category with new records."""
    sections = []
    for category in matches.categories():
        section = SECTION_FORMATTERS[category](matches, markdown_links)
        if section:
            sections.append(section.rstrip("\n") + "\n")
    return SECTION_SEPARATOR.join(sections)

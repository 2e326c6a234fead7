"""Function tags a user can follow, keyed by the gazette record field that carries them."""

from enum import Enum
from typing import Dict, Iterable, List

from .models import GazetteRecord


class FunctionTag(str, Enum):
    """Display label (member name) mapped to the record field (value)."""

    Ministre = "ministre"
    Secretaire_etat = "secretaire_etat"
    Cabinet_ministeriel = "cabinet"
    Ambassadeur = "ambassadeur"
    Consul = "consul"
    Prefet = "prefet"
    Sous_prefet = "sous_prefet"
    Recteur = "recteur"
    Directeur_administration_centrale = "directeur_administration_centrale"
    Inspecteur_general = "inspecteur_general"
    Conseil_des_ministres = "conseil_ministres"
    Magistrat = "magistrat"
    Commissaire_du_gouvernement = "commissaire_gouvernement"
    Officier_general = "officier_general"

    @property
    def label(self) -> str:
        return self.name.replace("_", " ")


def build_function_tag_map(
    records: Iterable[GazetteRecord], tags: Iterable[str]
) -> Dict[str, List[GazetteRecord]]:
    """Map each tag to the records carrying its field, keeping record order.

    Tags without any matching record are left out of the map.
    """
    records = list(records)
    tag_map: Dict[str, List[GazetteRecord]] = {}
    for tag in tags:
        matching = [record for record in records if record.functions.get(tag)]
        if matching:
            tag_map[tag] = matching
    return tag_map

"""ffa_calendar_etl.regions

Reference data for FFA regional leagues (ligues) and French departments.

  - REGIONS: the ordered ligue enumeration used to partition the calendar
  - LEVELS: competition levels published by the FFA
  - region_subdivision(): ligue → (region code, region name, display code)
  - department_name(): department lookup
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ffa_calendar_etl.normalize import trim

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Ligues and levels
# ---------------------------------------------------------------------------

REGIONS: tuple[str, ...] = (
    "ARA", "BFC", "BRE", "CEN", "COR", "G-E", "GUA", "GUY", "H-F", "I-F",
    "MAR", "MAY", "N-A", "N-C", "NOR", "OCC", "PCA", "P-F", "P-L", "REU", "W-F",
)

LEVELS: tuple[str, ...] = ("Départemental", "Régional", "National", "International")


@dataclass(frozen=True)
class RegionSubdivision:
    code: str
    name: str
    display_code: str


_SUBDIVISIONS: dict[str, RegionSubdivision] = {
    "ARA": RegionSubdivision("ARA", "Auvergne-Rhône-Alpes", "ARA"),
    "BFC": RegionSubdivision("BFC", "Bourgogne-Franche-Comté", "BFC"),
    "BRE": RegionSubdivision("BRE", "Bretagne", "BRE"),
    "CEN": RegionSubdivision("CVL", "Centre-Val de Loire", "CVL"),
    "COR": RegionSubdivision("COR", "Corse", "COR"),
    "G-E": RegionSubdivision("GES", "Grand Est", "GES"),
    "H-F": RegionSubdivision("HDF", "Hauts-de-France", "HDF"),
    "I-F": RegionSubdivision("IDF", "Île-de-France", "IDF"),
    "NOR": RegionSubdivision("NOR", "Normandie", "NOR"),
    "N-A": RegionSubdivision("NAQ", "Nouvelle-Aquitaine", "NAQ"),
    "OCC": RegionSubdivision("OCC", "Occitanie", "OCC"),
    "P-L": RegionSubdivision("PDL", "Pays de la Loire", "PDL"),
    "PCA": RegionSubdivision("PAC", "Provence-Alpes-Côte d'Azur", "PAC"),
    # Overseas
    "GUA": RegionSubdivision("971", "Guadeloupe", "GP"),
    "GUY": RegionSubdivision("973", "Guyane", "GF"),
    "MAR": RegionSubdivision("972", "Martinique", "MQ"),
    "MAY": RegionSubdivision("976", "Mayotte", "YT"),
    "REU": RegionSubdivision("974", "La Réunion", "RE"),
    "N-C": RegionSubdivision("988", "Nouvelle-Calédonie", "NC"),
    "P-F": RegionSubdivision("987", "Polynésie française", "PF"),
    "W-F": RegionSubdivision("986", "Wallis-et-Futuna", "WF"),
}


def region_subdivision(ligue: str) -> RegionSubdivision:
    """Return the administrative region for a ligue code.

    Unknown codes are passed through unchanged so the proposal still carries
    something a reviewer can fix.
    """
    found = _SUBDIVISIONS.get(ligue)
    if found is None:
        log.warning("Unknown ligue code %r; using it as region name", ligue)
        return RegionSubdivision(ligue, ligue, ligue)
    return found


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------

FRENCH_DEPARTMENTS: dict[str, str] = {
    "01": "Ain", "02": "Aisne", "03": "Allier", "04": "Alpes-de-Haute-Provence",
    "05": "Hautes-Alpes", "06": "Alpes-Maritimes", "07": "Ardèche", "08": "Ardennes",
    "09": "Ariège", "10": "Aube", "11": "Aude", "12": "Aveyron",
    "13": "Bouches-du-Rhône", "14": "Calvados", "15": "Cantal", "16": "Charente",
    "17": "Charente-Maritime", "18": "Cher", "19": "Corrèze", "2A": "Corse-du-Sud",
    "2B": "Haute-Corse", "21": "Côte-d'Or", "22": "Côtes-d'Armor", "23": "Creuse",
    "24": "Dordogne", "25": "Doubs", "26": "Drôme", "27": "Eure",
    "28": "Eure-et-Loir", "29": "Finistère", "30": "Gard", "31": "Haute-Garonne",
    "32": "Gers", "33": "Gironde", "34": "Hérault", "35": "Ille-et-Vilaine",
    "36": "Indre", "37": "Indre-et-Loire", "38": "Isère", "39": "Jura",
    "40": "Landes", "41": "Loir-et-Cher", "42": "Loire", "43": "Haute-Loire",
    "44": "Loire-Atlantique", "45": "Loiret", "46": "Lot", "47": "Lot-et-Garonne",
    "48": "Lozère", "49": "Maine-et-Loire", "50": "Manche", "51": "Marne",
    "52": "Haute-Marne", "53": "Mayenne", "54": "Meurthe-et-Moselle", "55": "Meuse",
    "56": "Morbihan", "57": "Moselle", "58": "Nièvre", "59": "Nord",
    "60": "Oise", "61": "Orne", "62": "Pas-de-Calais", "63": "Puy-de-Dôme",
    "64": "Pyrénées-Atlantiques", "65": "Hautes-Pyrénées", "66": "Pyrénées-Orientales",
    "67": "Bas-Rhin", "68": "Haut-Rhin", "69": "Rhône", "70": "Haute-Saône",
    "71": "Saône-et-Loire", "72": "Sarthe", "73": "Savoie", "74": "Haute-Savoie",
    "75": "Paris", "76": "Seine-Maritime", "77": "Seine-et-Marne", "78": "Yvelines",
    "79": "Deux-Sèvres", "80": "Somme", "81": "Tarn", "82": "Tarn-et-Garonne",
    "83": "Var", "84": "Vaucluse", "85": "Vendée", "86": "Vienne",
    "87": "Haute-Vienne", "88": "Vosges", "89": "Yonne", "90": "Territoire de Belfort",
    "91": "Essonne", "92": "Hauts-de-Seine", "93": "Seine-Saint-Denis",
    "94": "Val-de-Marne", "95": "Val-d'Oise",
    "971": "Guadeloupe", "972": "Martinique", "973": "Guyane",
    "974": "La Réunion", "976": "Mayotte",
}


def _lookup_key(code: str) -> str:
    # FFA pads metropolitan codes to three digits ("074")
    if len(code) == 3 and code.startswith("0"):
        return code[1:]
    return code


def department_name(code: str | None) -> str | None:
    """Human name of a department; falls back to the raw code."""
    v = trim(code)
    if v is None:
        return None
    return FRENCH_DEPARTMENTS.get(_lookup_key(v.upper()), v)

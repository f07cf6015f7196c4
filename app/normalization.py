"""
Normalization of device models, part types and catalog search terms.

Alias tables are ordered: the first canonical key with an alias contained
in the input wins.
"""

import re
import unicodedata
from typing import List, Tuple


MODEL_ALIASES: List[Tuple[str, List[str]]] = [
    ("Galaxy S20", ["galaxy s20", "g980f", "sm-g980f", "s20"]),
    ("Galaxy S21", ["galaxy s21", "g991f", "sm-g991f", "s21"]),
    ("iPhone 12", ["iphone 12", "a2172", "iph12"]),
    ("iPhone 13", ["iphone 13", "a2633", "iph13"]),
    ("Redmi Note 11", ["redmi note 11", "note11", "redmi 11"]),
    ("Redmi Note 12", ["redmi note 12", "note12", "redmi 12"]),
]

PART_ALIASES: List[Tuple[str, List[str]]] = [
    ("frontal", ["frontal", "tela", "display", "touch", "lcd"]),
    ("bateria", ["bateria", "battery"]),
    ("camera", ["camera", "câmera", "cam"]),
    ("alto-falante", ["alto-falante", "speaker", "som"]),
    ("microfone", ["microfone", "mic"]),
    ("conector", ["conector", "entrada", "porta"]),
]


def _match_alias(value: str, table: List[Tuple[str, List[str]]]) -> str:
    lowered = value.lower().strip()
    for canonical, aliases in table:
        if any(alias in lowered for alias in aliases):
            return canonical
    return value


def normalize_model(model: str) -> str:
    """Map a free-text device model to its catalog name, or return it unchanged."""
    return _match_alias(model, MODEL_ALIASES)


def normalize_part_type(part: str) -> str:
    """Map a free-text part phrase to its catalog part type, or return it unchanged."""
    return _match_alias(part, PART_ALIASES)


def normalize_search_term(term: str) -> str:
    """
    Prepare a term for a catalog LIKE filter.

    Lower-cases, trims, strips accents, drops anything that is not a
    letter, digit or whitespace, and collapses runs of whitespace.
    """
    term = term.lower().strip()
    decomposed = unicodedata.normalize("NFD", term)
    without_accents = "".join(c for c in decomposed if not unicodedata.combining(c))
    cleaned = re.sub(r"[^a-z0-9\s]", "", without_accents)
    return re.sub(r"\s+", " ", cleaned).strip()

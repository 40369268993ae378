"""Field-name normalization for Level 1 ingestion.

Source headers arrive in any convention (``TradeDate``, ``trade-date``,
``Trade Date``); mapping compares and emits snake_case names.
"""

import re


def to_snake_case(name: str) -> str:
    """Convert a string to snake_case.

    Handles CamelCase, PascalCase, kebab-case, spaces and repeated
    separators. Runs of capitals (``ISIN``) stay together.

    Args:
        name: String to convert

    Returns:
        snake_case version of the string
    """
    name = re.sub(r"[\s\-./]+", "_", str(name).strip())
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    name = re.sub(r"[^0-9a-zA-Z_]", "", name).lower()
    return re.sub(r"_+", "_", name).strip("_")


def normalize_field_names(names: list[str]) -> dict[str, str]:
    """Map each source name to a unique snake_case name.

    Collisions get a numeric suffix in order of appearance
    (``Amount``/``amount`` -> ``amount``/``amount_2``); empty results
    become ``field_<n>``.
    """
    mapping: dict[str, str] = {}
    used: set[str] = set()
    for position, original in enumerate(names, start=1):
        candidate = to_snake_case(original) or f"field_{position}"
        unique = candidate
        suffix = 2
        while unique in used:
            unique = f"{candidate}_{suffix}"
            suffix += 1
        used.add(unique)
        mapping[original] = unique
    return mapping

"""Name conversion helpers used to derive storage names from class names."""

import re

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")


def snake_case(name: str) -> str:
    """
    Convert a CamelCase identifier to snake_case.

    Example:
        >>> snake_case("OrderItem")
        'order_item'
        >>> snake_case("HTTPRequestLog")
        'http_request_log'
    """
    name = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def pluralize(word: str) -> str:
    """
    Pluralize an English noun using the regular suffix rules.

    Irregular nouns are not handled; pass ``table_name=`` on the model when
    the derived name is wrong.
    """
    if not word:
        return word
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return f"{word}es"
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return f"{word[:-1]}ies"
    return f"{word}s"


def snake_plural(name: str) -> str:
    """Default table name for a model class: ``OrderItem`` -> ``order_items``."""
    return pluralize(snake_case(name))

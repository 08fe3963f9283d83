"""Advertisement-to-variant matching logic."""

from __future__ import annotations

from fognode.core.model import Advertisement, MatchRules


def _address_prefix_match(address: str, rules: MatchRules) -> bool:
    upper_address = address.upper()
    return any(upper_address.startswith(prefix.upper()) for prefix in rules.address_prefix)


def _name_contains_match(advertisement: Advertisement, rules: MatchRules) -> bool:
    names = (advertisement.name.lower(), advertisement.local_name.lower())
    return any(token.lower() in name for token in rules.name_contains for name in names)


def match_score(advertisement: Advertisement, rules: MatchRules) -> int:
    address_match = _address_prefix_match(advertisement.address, rules)
    name_match = _name_contains_match(advertisement, rules)
    if address_match and name_match:
        return 3
    if address_match:
        return 2
    if name_match:
        return 1
    return 0

"""
Credit-pack product table.

Maps billing-platform product identifiers to the number of looks they
grant. Store product ids carry prefixes and suffixes around the pack id
("com.example.app.30looks", "eclat_30looks", "30looks_v2"), so a pack id
matches when it appears as a whole token: not preceded or followed by a
letter or digit. Longer ids are tried first.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple


@dataclass(frozen=True)
class CreditPack:
    product_id: str
    credits: int
    # Looks packs count towards repeat-buyer detection; the entry product does not.
    counts_as_pack: bool = True
    grants_entry_access: bool = False


ENTRY_ACCESS = CreditPack("entry_access", credits=6, counts_as_pack=False, grants_entry_access=True)
PACK_10 = CreditPack("10looks", credits=10)
PACK_30 = CreditPack("30looks", credits=30)
PACK_100 = CreditPack("100looks", credits=100)

CREDIT_PACKS: Dict[str, CreditPack] = {
    pack.product_id: pack for pack in (ENTRY_ACCESS, PACK_10, PACK_30, PACK_100)
}

_TOKEN_PATTERNS: List[Tuple[Pattern, CreditPack]] = [
    (re.compile(rf"(?<![a-z0-9]){re.escape(pack.product_id)}(?![a-z0-9])"), pack)
    for pack in sorted(CREDIT_PACKS.values(), key=lambda p: len(p.product_id), reverse=True)
]


def credit_pack_for_product(product_id: Optional[str]) -> Optional[CreditPack]:
    """Return the credit pack for a product id, or None if not a credit pack."""
    if not product_id:
        return None
    normalized = product_id.strip().lower()
    pack = CREDIT_PACKS.get(normalized)
    if pack is not None:
        return pack
    for pattern, candidate in _TOKEN_PATTERNS:
        if pattern.search(normalized):
            return candidate
    return None

"""Tests for product id to credit pack matching."""

import pytest

from tryon_billing.billing.catalog import ENTRY_ACCESS, PACK_10, PACK_30, PACK_100, credit_pack_for_product


@pytest.mark.parametrize("product_id,expected", [
    ("30looks", PACK_30),
    ("30LOOKS", PACK_30),
    ("com.example.tryon.30looks", PACK_30),
    ("eclat_30looks", PACK_30),
    ("30looks_v2", PACK_30),
    ("eclat-30looks-promo", PACK_30),
    ("eclat_100looks", PACK_100),
    ("com.example.tryon.100looks", PACK_100),
    ("eclat_10looks", PACK_10),
    ("eclat_entry_access", ENTRY_ACCESS),
])
def test_store_product_ids_match_their_pack(product_id, expected):
    assert credit_pack_for_product(product_id) == expected


@pytest.mark.parametrize("product_id", [None, "", "sticker_pack", "creator_mode_weekly", "130looks", "10looksplus"])
def test_non_pack_products(product_id):
    assert credit_pack_for_product(product_id) is None

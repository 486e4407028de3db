"""
Tests for column precision of financial values.

Covers:
- Money columns default to Numeric(15, 2) via the declarative type map
- Share percent and tax rate columns keep their explicit precision
"""

import pytest
from sqlalchemy import Numeric

from settlement_kernel.models import AllocationHeader, AllocationItem, TaxRateConfig


def column_type(model, name):
    return model.__table__.c[name].type


@pytest.mark.parametrize(
    "model, name",
    [
        (AllocationHeader, "total_usage_fee"),
        (AllocationHeader, "total_taxable"),
        (AllocationHeader, "total_exempt"),
        (AllocationItem, "total_allocated"),
        (AllocationItem, "vat_amount"),
        (AllocationItem, "net_payable"),
    ],
)
def test_money_columns(model, name):
    col_type = column_type(model, name)
    assert isinstance(col_type, Numeric)
    assert (col_type.precision, col_type.scale) == (15, 2)


@pytest.mark.parametrize(
    "model, name, precision, scale",
    [
        (AllocationItem, "share_percent", 9, 4),
        (AllocationHeader, "vat_rate_percent", 5, 2),
        (TaxRateConfig, "rate_percent", 5, 2),
    ],
)
def test_percent_columns(model, name, precision, scale):
    col_type = column_type(model, name)
    assert isinstance(col_type, Numeric)
    assert (col_type.precision, col_type.scale) == (precision, scale)

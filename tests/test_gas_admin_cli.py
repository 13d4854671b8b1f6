import argparse

import pytest

from scripts.gas_admin import to_mist


def test_sui_amounts_convert_exactly():
    assert to_mist("1", "sui") == "1000000000"
    assert to_mist("0.000000001", "sui") == "1"
    assert to_mist("12345678.987654321", "sui") == "12345678987654321"


def test_mist_amounts_pass_through():
    assert to_mist("250", "mist") == "250"


@pytest.mark.parametrize("value,unit", [("0.0000000001", "sui"), ("1.5", "mist"), ("0", "sui"), ("-1", "mist"), ("abc", "sui")])
def test_unrepresentable_amounts_are_rejected(value, unit):
    with pytest.raises(argparse.ArgumentTypeError):
        to_mist(value, unit)

from fractions import Fraction

import pytest

from clusterops.quantity import convert_to_gi, parse_quantity


@pytest.mark.parametrize(
    "text, expected",
    [
        ("32920204", "32Mi"),
        ("32920204Ki", "32Gi"),
        ("32920204Mi", "32149Gi"),
    ],
)
def test_convert_to_gi(text, expected):
    assert convert_to_gi(parse_quantity(text)) == expected


def test_parse_binary_suffix():
    assert parse_quantity("32920204Ki") == 32920204 * 1024


def test_parse_milli():
    assert parse_quantity("500m") == Fraction(1, 2)


def test_parse_exponent():
    assert parse_quantity("1e3") == 1000


def test_parse_decimal_fraction():
    assert parse_quantity("1.5Gi") == Fraction(3, 2) * 1024**3


def test_parse_negative():
    assert parse_quantity("-2k") == -2000


@pytest.mark.parametrize("text", ["", "abc", "12XB", "."])
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        parse_quantity(text)


def test_convert_rounds_fractional_bytes_up():
    assert convert_to_gi(Fraction(1, 2)) == "1Mi"


def test_convert_exact_gi():
    assert convert_to_gi(parse_quantity("4Gi")) == "4Gi"
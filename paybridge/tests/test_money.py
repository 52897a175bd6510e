from __future__ import annotations

from decimal import Decimal

import pytest

from paybridge.app.gateway import from_minor_units, to_minor_units


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        (19.99, 1999),
        (12.5, 1250),
        ("0.29", 29),
        (Decimal("1.005"), 101),
        (0.015, 2),
        (100, 10000),
        (0, 0),
    ],
)
def test_to_minor_units_rounds_half_up(amount, expected) -> None:
    assert to_minor_units(amount) == expected


def test_to_minor_units_is_stable_across_calls() -> None:
    first = to_minor_units(4.35)
    assert first == 435
    assert all(to_minor_units(4.35) == first for _ in range(5))


def test_to_minor_units_rejects_non_numeric_values() -> None:
    with pytest.raises(ValueError):
        to_minor_units("twelve")
    with pytest.raises(ValueError):
        to_minor_units(float("nan"))
    with pytest.raises(TypeError):
        to_minor_units(True)


def test_from_minor_units_returns_major_amount() -> None:
    assert from_minor_units(1999) == Decimal("19.99")

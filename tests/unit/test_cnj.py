from __future__ import annotations

import random

import pytest

from mapa_import.validation.cnj import (
    body_of,
    check_digits,
    format_cnj,
    is_valid,
    only_digits,
    with_check_digits,
)

# hand-computed: body 000123420245010001 -> weighted sum 145 -> 98 - 48 = 50
VALID = "00012345020245010001"


@pytest.mark.parametrize(
    "body,expected",
    [
        ("000123420245010001", "50"),
        ("000000120235020002", "09"),
        ("000000220235020002", "98"),  # weighted sum 97 -> 97 mod 97 == 0
    ],
)
def test_check_digits_known_values(body: str, expected: str):
    assert check_digits(body) == expected


def test_is_valid_known_number():
    assert is_valid(VALID)
    assert is_valid("00000010920235020002")


def test_scenario_a_number_has_wrong_check_digits():
    assert not is_valid("00012345620245010001")


@pytest.mark.parametrize(
    "value",
    [
        "",
        "0001234-50.2024.5.01.0001",  # punctuation is not canonical
        "0001234502024501000",  # 19 digits
        "000123450202450100011",  # 21 digits
        "0001234502024501000a",
        "０００１２３４５０２０２４５０１０００１",  # full-width digits
    ],
)
def test_is_valid_rejects_non_canonical(value: str):
    assert not is_valid(value)


def test_check_digits_rejects_bad_body():
    with pytest.raises(ValueError):
        check_digits("123")
    with pytest.raises(ValueError):
        check_digits("00012342024501000x")


def test_roundtrip_random_bodies_are_valid():
    rng = random.Random(1234)
    for _ in range(500):
        body = "".join(rng.choice("0123456789") for _ in range(18))
        full = with_check_digits(body)
        assert len(full) == 20
        assert body_of(full) == body
        assert is_valid(full)


def test_single_digit_flip_invalidates_every_position():
    rng = random.Random(99)
    for _ in range(50):
        full = with_check_digits("".join(rng.choice("0123456789") for _ in range(18)))
        for pos in range(20):
            flipped = full[:pos] + str((int(full[pos]) + rng.randint(1, 9)) % 10) + full[pos + 1:]
            assert not is_valid(flipped), (full, pos, flipped)


def test_helpers():
    assert only_digits("0001234-50.2024.5.01.0001") == VALID
    assert only_digits(None) == ""
    assert format_cnj(VALID) == "0001234-50.2024.5.01.0001"
    assert format_cnj("abc") == "abc"

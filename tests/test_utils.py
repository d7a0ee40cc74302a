"""Tests for touchkio/utils.py."""

from __future__ import annotations

import pytest
from touchkio.utils import (
    clamp,
    mask_secret,
    node_id_from_serial,
    parse_bool,
    parse_float,
    parse_int,
    split_csv,
    strip_nul,
)


@pytest.mark.parametrize(
    "serial,expected",
    [
        ("10000000a1b2c3d4", "rpi_B2C3D4"),
        ("00000000-ab:cd-ef", "rpi_CDEF"),
        ("abc", "rpi_ABC"),
        ("12345678\0", "rpi_345678"),
    ],
)
def test_node_id_from_serial(serial, expected):
    assert node_id_from_serial(serial) == expected


def test_parse_bool_variants():
    assert parse_bool("TRUE") is True
    assert parse_bool(" on ") is True
    assert parse_bool("0", True) is False
    assert parse_bool(None, True) is True


def test_parse_int_accepts_bytes_and_whitespace():
    assert parse_int(b" 42\n", None) == 42
    assert parse_int("x", 7) == 7
    assert parse_int(None, None) is None


def test_parse_float_fallback():
    assert parse_float("1.5", 0.0) == 1.5
    assert parse_float("abc", 1.25) == 1.25


def test_split_csv_trims_and_drops_empty():
    assert split_csv(" http://a , ,http://b ") == ["http://a", "http://b"]
    assert split_csv(None) == []


def test_strip_nul_and_clamp():
    assert strip_nul("Raspberry Pi 4\0\n") == "Raspberry Pi 4"
    assert clamp(0, 1, 100) == 1
    assert clamp(150, 1, 100) == 100
    assert clamp(50, 1, 100) == 50


def test_mask_secret():
    assert mask_secret("secret") == "******"
    assert mask_secret(None) is None

"""Tests for address canonicalization."""

import pytest

from schedulink.utils import InvalidAddress, address_to_phone, canonicalize_address

SUFFIX = "@s.whatsapp.net"


class TestCanonicalizeAddress:
    @pytest.mark.parametrize(
        "raw",
        ["+90 555 123 45 67", "90-555-123-45-67", "905551234567", "(90) 555 123 4567"],
    )
    def test_equivalent_encodings_share_a_key(self, raw):
        assert canonicalize_address(raw, SUFFIX, 10) == "905551234567@s.whatsapp.net"

    def test_idempotent(self):
        once = canonicalize_address("+90 555 123 45 67", SUFFIX, 10)
        assert canonicalize_address(once, SUFFIX, 10) == once

    def test_existing_address_returned_unchanged(self):
        assert canonicalize_address("905551234567@g.us", SUFFIX, 10) == "905551234567@g.us"

    def test_surrounding_whitespace_stripped(self):
        assert canonicalize_address("  905551234567@s.whatsapp.net ", SUFFIX, 10) == (
            "905551234567@s.whatsapp.net"
        )

    def test_exactly_ten_digits_accepted(self):
        assert canonicalize_address("5551234567", SUFFIX, 10) == "5551234567@s.whatsapp.net"

    def test_too_few_digits_rejected(self):
        with pytest.raises(InvalidAddress, match="at least 10 digits"):
            canonicalize_address("12345", SUFFIX, 10)

    def test_letters_do_not_count_as_digits(self):
        with pytest.raises(InvalidAddress):
            canonicalize_address("call me 12345", SUFFIX, 10)

    @pytest.mark.parametrize("raw", [None, "", "   ", 905551234567])
    def test_empty_or_non_string_rejected(self, raw):
        with pytest.raises(InvalidAddress, match="non-empty string"):
            canonicalize_address(raw, SUFFIX, 10)

    def test_invalid_address_is_a_value_error(self):
        with pytest.raises(ValueError):
            canonicalize_address("", SUFFIX, 10)

    def test_custom_suffix(self):
        assert canonicalize_address("905551234567", "@example.test", 10) == (
            "905551234567@example.test"
        )


class TestAddressToPhone:
    def test_prefixes_plus(self):
        assert address_to_phone("905551234567@s.whatsapp.net") == "+905551234567"

    def test_non_numeric_local_part_kept(self):
        assert address_to_phone("team@g.us") == "team"

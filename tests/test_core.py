"""
Phone validation, hashing, codes and tokens.
"""
from datetime import timedelta

import pytest

from khidma.core.phone import national_number, normalize_phone, validate_mauritanian_mobile
from khidma.core.security import (
    create_access_token,
    generate_numeric_code,
    generate_secure_token,
    get_password_hash,
    verify_password,
    verify_token,
)


class TestPhone:
    @pytest.mark.parametrize("phone", [
        "+22222123456",
        "+222 36 12 34 56",
        "46123456",
        "6123-4567",
        "(+222) 33123456",
    ])
    def test_valid_numbers(self, phone):
        assert validate_mauritanian_mobile(phone) is True

    @pytest.mark.parametrize("phone", [
        "",
        "+22212345678",
        "51234567",
        "2512345",
        "+2222212345",
        "+33612345678",
        "2812345a",
    ])
    def test_invalid_numbers(self, phone):
        assert validate_mauritanian_mobile(phone) is False

    def test_normalize(self):
        assert normalize_phone("+222 (36) 12-34-56") == "+22236123456"

    def test_national_number(self):
        assert national_number("+22236123456") == "36123456"
        assert national_number("123") is None


class TestSecurity:
    def test_password_hash_roundtrip(self):
        hashed = get_password_hash("123456")

        assert hashed != "123456"
        assert verify_password("123456", hashed)
        assert not verify_password("654321", hashed)

    @pytest.mark.parametrize("digits", [4, 6])
    def test_numeric_code_has_no_leading_zero(self, digits):
        for _ in range(50):
            code = generate_numeric_code(digits)
            assert len(code) == digits
            assert code[0] != "0"

    def test_secure_token_length(self):
        assert len(generate_secure_token()) == 64

    def test_access_token(self):
        token = create_access_token("user-1", extra_claims={"sid": "session-1"})
        payload = verify_token(token)

        assert payload["sub"] == "user-1"
        assert payload["sid"] == "session-1"

    def test_expired_token(self):
        token = create_access_token("user-1", expires_delta=timedelta(seconds=-1))

        assert verify_token(token) is None

    def test_garbage_token(self):
        assert verify_token("not-a-token") is None

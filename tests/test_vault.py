"""Unit tests for auth/vault.py -- salts, digests, codes and opaque tokens.

Covers:
- Salts are 64 lowercase hex chars and do not repeat
- digest() is deterministic and sensitive to both password and salt
- verify() accepts the right password and rejects any other
- Verification codes are always six digits in [100000, 999999]
- Opaque tokens honour the requested byte length
"""

import re

from auth import vault

_HEX = re.compile(r"^[0-9a-f]+$")


class TestSalt:
    def test_salt_is_lowercase_hex_of_fixed_length(self) -> None:
        salt = vault.new_salt()
        assert len(salt) == 64
        assert _HEX.match(salt)

    def test_salts_do_not_repeat(self) -> None:
        assert len({vault.new_salt() for _ in range(50)}) == 50


class TestDigest:
    def test_same_inputs_same_digest(self) -> None:
        salt = vault.new_salt()
        assert vault.digest("p1", salt) == vault.digest("p1", salt)

    def test_different_salts_different_digests(self) -> None:
        assert vault.digest("p1", vault.new_salt()) != vault.digest("p1", vault.new_salt())

    def test_different_passwords_different_digests(self) -> None:
        salt = vault.new_salt()
        assert vault.digest("p1", salt) != vault.digest("p2", salt)

    def test_digest_is_lowercase_hex(self) -> None:
        assert _HEX.match(vault.digest("p1", vault.new_salt()))


class TestVerify:
    def test_correct_password_verifies(self) -> None:
        salt = vault.new_salt()
        assert vault.verify("p1", salt, vault.digest("p1", salt)) is True

    def test_wrong_password_fails(self) -> None:
        salt = vault.new_salt()
        stored = vault.digest("p1", salt)
        for candidate in ("p2", "P1", "p1 ", "p"):
            assert vault.verify(candidate, salt, stored) is False

    def test_wrong_salt_fails(self) -> None:
        stored = vault.digest("p1", vault.new_salt())
        assert vault.verify("p1", vault.new_salt(), stored) is False

    def test_empty_inputs_never_verify(self) -> None:
        salt = vault.new_salt()
        stored = vault.digest("p1", salt)
        assert vault.verify("", salt, stored) is False
        assert vault.verify("p1", "", stored) is False
        assert vault.verify("p1", salt, "") is False

    def test_burn_verify_returns_nothing(self) -> None:
        assert vault.burn_verify("anything") is None


class TestCodesAndTokens:
    def test_verification_code_is_six_digits_in_range(self) -> None:
        for _ in range(500):
            code = vault.new_verification_code()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_opaque_token_default_is_32_bytes(self) -> None:
        token = vault.new_opaque_token()
        assert len(token) == 64
        assert _HEX.match(token)

    def test_opaque_token_custom_length(self) -> None:
        assert len(vault.new_opaque_token(8)) == 16

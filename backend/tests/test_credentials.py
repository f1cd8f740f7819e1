"""Unit tests for API key credentials."""

from __future__ import annotations

import re

from app.auth import credentials
from app.schemas.account_models import ApiScope


class TestIssue:
    def test_token_shape(self):
        issued = credentials.issue(rounds=4)
        assert re.fullmatch(r"exp_[a-z0-9]{8}_[A-Za-z0-9]{32}", issued.token)
        assert issued.token == f"exp_{issued.prefix}_{issued.secret}"

    def test_only_hash_is_kept_for_storage(self):
        issued = credentials.issue(rounds=4)
        assert issued.secret not in issued.hashed_secret
        assert issued.hashed_secret.startswith("$2")

    def test_prefixes_vary(self):
        prefixes = {credentials.issue(rounds=4).prefix for _ in range(5)}
        assert len(prefixes) == 5


class TestParseToken:
    def test_valid(self):
        parsed = credentials.parse_token("exp_abcd1234_SECRETsecret")
        assert parsed.prefix == "abcd1234"
        assert parsed.secret == "SECRETsecret"

    def test_secret_may_not_be_split_further(self):
        parsed = credentials.parse_token("exp_abcd1234_sec_ret")
        assert parsed.secret == "sec_ret"

    def test_invalid(self):
        for token in (None, "", "abc", "key_abcd1234_secret", "exp__secret", "exp_abcd1234_"):
            assert credentials.parse_token(token) is None


class TestVerify:
    def test_matching_secret(self):
        issued = credentials.issue(rounds=4)
        assert credentials.verify(issued.secret, issued.hashed_secret) is True

    def test_wrong_secret(self):
        issued = credentials.issue(rounds=4)
        assert credentials.verify("x" * 32, issued.hashed_secret) is False

    def test_malformed_hash(self):
        assert credentials.verify("secret", "not-a-bcrypt-hash") is False


class TestScopes:
    def test_wire_and_storage_forms(self):
        scopes = credentials.normalize_scopes(["expenses:read", "budget_read"])
        assert scopes == [ApiScope.EXPENSES_READ, ApiScope.BUDGET_READ]

    def test_unknown_and_duplicate_scopes_dropped(self):
        scopes = credentials.normalize_scopes(["expenses:read", "admin:all", "expenses:read"])
        assert scopes == [ApiScope.EXPENSES_READ]

    def test_scopes_to_strings(self):
        assert credentials.scopes_to_strings(["income_write", "bogus"]) == ["income:write"]

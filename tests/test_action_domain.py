"""Unit tests for action domain validation and matching."""

import base64

from toolgate.services.action_domain import (
    MATCH_SUBSTRING,
    MATCH_SUFFIX,
    decode_domain,
    encode_domain,
    is_action_domain_allowed,
    match_action_domain,
    validate,
    validate_action_domain,
)


class TestValidateActionDomain:
    """Test stored domain vs. spec server URL checks."""

    def test_matching_hostname(self):
        result = validate_action_domain("api.example.com", "https://api.example.com/v1")

        assert result.valid
        assert result.spec_domain == "api.example.com"

    def test_hostname_is_case_insensitive(self):
        assert validate_action_domain("API.Example.com", "https://api.example.COM").valid

    def test_mismatched_hostname(self):
        result = validate_action_domain("api.example.com", "https://evil.example.net")

        assert not result.valid
        assert "Domain mismatch" in result.reason
        assert result.spec_domain == "evil.example.net"

    def test_stored_scheme_must_match(self):
        result = validate_action_domain("https://api.example.com", "http://api.example.com")

        assert not result.valid
        assert "Protocol mismatch" in result.reason

    def test_bare_stored_domain_accepts_any_scheme(self):
        assert validate_action_domain("api.example.com", "http://api.example.com").valid

    def test_relative_server_url_is_invalid(self):
        result = validate_action_domain("api.example.com", "/v1")

        assert not result.valid


class TestIsActionDomainAllowed:
    """Test the operator allow-list."""

    def test_no_allow_list_is_unrestricted(self):
        assert is_action_domain_allowed("anything.example.com", None)
        assert is_action_domain_allowed("anything.example.com", [])

    def test_exact_entry(self):
        assert is_action_domain_allowed("api.example.com", ["api.example.com"])
        assert not is_action_domain_allowed("other.example.com", ["api.example.com"])

    def test_wildcard_matches_base_and_subdomains(self):
        allowed = ["*.example.com"]

        assert is_action_domain_allowed("example.com", allowed)
        assert is_action_domain_allowed("a.b.example.com", allowed)
        assert not is_action_domain_allowed("example.com.evil.net", allowed)
        assert not is_action_domain_allowed("notexample.com", allowed)

    def test_stored_domain_with_scheme(self):
        assert is_action_domain_allowed("https://api.example.com", ["api.example.com"])

    def test_combined_validate(self):
        assert not validate("api.example.com", "https://api.example.com", ["other.com"]).valid
        assert validate("api.example.com", "https://api.example.com", ["api.example.com"]).valid


class TestEncodeDomain:
    """Test canonical domain encoding."""

    def test_short_domain_replaces_dots(self):
        assert encode_domain("a.io") == "a---io"

    def test_long_domain_uses_base64_prefix(self):
        key_store = {}
        domain = "api.example.com"
        full = base64.b64encode(domain.encode("utf-8")).decode("ascii")

        key = encode_domain(domain, key_store)

        assert key == full[:10]
        assert key_store[key] == full
        assert decode_domain(key, key_store) == domain

    def test_short_domain_decodes(self):
        assert decode_domain("a---io") == "a.io"


class TestMatchActionDomain:
    """Test resolution of tool identifiers to compiled domains."""

    def test_suffix_requires_delimited_suffix(self):
        domains = ["a---io"]

        assert match_action_domain("listItems_action_a---io", domains, MATCH_SUFFIX) == "a---io"
        assert match_action_domain("a---io_tool", domains, MATCH_SUFFIX) is None

    def test_suffix_disambiguates_overlapping_domains(self):
        domains = ["a---io", "ba---io"]

        assert match_action_domain("get_action_ba---io", domains, MATCH_SUFFIX) == "ba---io"
        assert match_action_domain("get_action_a---io", domains, MATCH_SUFFIX) == "a---io"

    def test_substring_first_match_is_deterministic(self):
        """Legacy containment picks the first domain in insertion order."""
        domains = ["a---io", "ba---io"]

        assert match_action_domain("get_action_ba---io", domains, MATCH_SUBSTRING) == "a---io"
        assert match_action_domain("get_action_ba---io", list(reversed(domains)), MATCH_SUBSTRING) == "ba---io"

    def test_no_match(self):
        assert match_action_domain("web_search", ["a---io"]) is None

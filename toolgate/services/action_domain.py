"""Domain integrity checks for OpenAPI action sets."""

import base64
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from toolgate.models.tool import ACTION_DELIMITER, ACTION_DOMAIN_SEPARATOR, ENCODED_DOMAIN_LENGTH

logger = logging.getLogger(__name__)

MATCH_SUFFIX = "suffix"
MATCH_SUBSTRING = "substring"


@dataclass(frozen=True)
class DomainValidationResult:
    valid: bool
    reason: Optional[str] = None
    spec_domain: Optional[str] = None


def _has_scheme(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def extract_hostname(domain_or_url: str) -> Optional[str]:
    """Hostname of a bare domain or URL, lowercased."""
    if not domain_or_url:
        return None
    candidate = domain_or_url.strip()
    if not _has_scheme(candidate):
        candidate = f"https://{candidate}"
    try:
        hostname = urlparse(candidate).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def validate_action_domain(stored_domain: str, spec_server_url: str) -> DomainValidationResult:
    """
    Check that the spec's server URL points at the registered domain.

    Args:
        stored_domain: Domain registered with the action set, with or without scheme
        spec_server_url: servers[0].url from the OpenAPI document

    Returns:
        DomainValidationResult; never raises
    """
    try:
        spec_url = urlparse(spec_server_url)
        spec_hostname = (spec_url.hostname or "").lower()
    except ValueError as e:
        return DomainValidationResult(False, f"Failed to parse spec server URL '{spec_server_url}': {e}")

    if not spec_url.scheme or not spec_hostname:
        return DomainValidationResult(False, f"Spec server URL '{spec_server_url}' is not an absolute URL")

    client_scheme = None
    if _has_scheme(stored_domain):
        try:
            client_url = urlparse(stored_domain.strip())
            client_hostname = (client_url.hostname or "").lower()
            client_scheme = client_url.scheme.lower()
        except ValueError as e:
            return DomainValidationResult(False, f"Failed to parse stored domain '{stored_domain}': {e}")
    else:
        client_hostname = stored_domain.strip().lower()

    if client_hostname != spec_hostname:
        return DomainValidationResult(
            False,
            f"Domain mismatch: stored domain '{stored_domain}', but spec uses '{spec_hostname}'",
            spec_hostname,
        )

    if client_scheme and client_scheme != spec_url.scheme.lower():
        return DomainValidationResult(
            False,
            f"Protocol mismatch: stored domain uses '{client_scheme}', but spec uses '{spec_url.scheme}'",
            spec_hostname,
        )

    return DomainValidationResult(True, None, spec_hostname)


def is_action_domain_allowed(domain: str, allowed_domains: Optional[List[str]]) -> bool:
    """
    Check a domain against the operator allow-list.

    No allow-list (None or empty) means the operator has not restricted domains.
    Entries are exact hostnames or "*.example.com" wildcards, which match the
    base domain and any subdomain.
    """
    if not allowed_domains:
        return True

    hostname = extract_hostname(domain)
    if not hostname:
        return False

    for allowed in allowed_domains:
        pattern = allowed.strip().lower()
        if pattern.startswith("*."):
            base = pattern[2:]
            if hostname == base or hostname.endswith(f".{base}"):
                return True
        elif extract_hostname(pattern) == hostname:
            return True
    return False


def validate(
    stored_domain: str,
    spec_server_url: str,
    allowed_domains: Optional[List[str]],
) -> DomainValidationResult:
    """Allow-list and domain-match checks combined; both must pass."""
    if not is_action_domain_allowed(stored_domain, allowed_domains):
        return DomainValidationResult(False, f"Domain '{stored_domain}' is not in the allowed domains list")
    return validate_action_domain(stored_domain, spec_server_url)


def encode_domain(domain: str, key_store: Optional[Dict[str, str]] = None) -> str:
    """
    Canonical form of a domain as embedded in action tool identifiers.

    Short domains swap dots for the separator; longer ones are replaced by a
    fixed-length prefix of their base64 encoding, recorded in key_store so the
    full encoding can be recovered for the run.
    """
    if len(domain) <= ENCODED_DOMAIN_LENGTH:
        return domain.replace(".", ACTION_DOMAIN_SEPARATOR)

    encoded = base64.b64encode(domain.encode("utf-8")).decode("ascii")
    key = encoded[:ENCODED_DOMAIN_LENGTH]
    if key_store is not None:
        existing = key_store.get(key)
        if existing and existing != encoded:
            logger.warning(f"Encoded domain key collision for '{key}'; keeping the first registration")
        else:
            key_store[key] = encoded
    return key


def decode_domain(key: str, key_store: Optional[Dict[str, str]] = None) -> str:
    """Inverse of encode_domain for keys known to the run."""
    if key_store and key in key_store:
        return base64.b64decode(key_store[key]).decode("utf-8")
    return key.replace(ACTION_DOMAIN_SEPARATOR, ".")


def match_action_domain(
    tool_id: str,
    domains: Iterable[str],
    strategy: str = MATCH_SUFFIX,
) -> Optional[str]:
    """
    Find the compiled domain a tool identifier refers to.

    Domains are scanned in insertion order and the first match wins.
    "substring" matches any identifier containing the domain; "suffix" requires
    the identifier to end with the action delimiter plus the domain.
    """
    for domain in domains:
        if strategy == MATCH_SUBSTRING:
            if domain in tool_id:
                return domain
        elif tool_id.endswith(f"{ACTION_DELIMITER}{domain}"):
            return domain
    return None

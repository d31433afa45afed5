"""
Domain validation and normalization.

Turns user input into the canonical form stored on a tracked domain:
lowercase, IDNA-encoded, without a trailing dot, scheme or path.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from .enums import DomainValidationErrorCode
from .exceptions import ValidationError


# Control characters, whitespace and symbols never valid in a hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~_]'
)

LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
MAX_DOMAIN_LENGTH = 253


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: DomainValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[DomainValidationError]


def strip_url_parts(raw: str) -> str:
    """Accept pasted URLs: drop scheme, path, port and a trailing dot."""
    value = raw.strip()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value.rstrip(".")


class DomainValidator:
    """
    Validates and normalizes domain names.

    - lowercases and IDNA-encodes international names
    - rejects forbidden characters
    - requires at least two labels, each a valid LDH label
    """

    def validate(self, raw_domain: str) -> DomainValidationResult:
        if not raw_domain or not raw_domain.strip():
            return self._invalid(
                DomainValidationErrorCode.EMPTY_INPUT,
                "Domain input is empty",
                {"raw_input": raw_domain},
            )

        domain = strip_url_parts(raw_domain)

        forbidden_found = FORBIDDEN_CHARS_PATTERN.findall(domain)
        if forbidden_found:
            return self._invalid(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                "Domain contains forbidden characters",
                {"raw_input": raw_domain, "forbidden_chars": forbidden_found},
            )

        try:
            canonical = self.normalize_to_canonical(domain)
        except ValidationError as e:
            return self._invalid(DomainValidationErrorCode.IDNA_ERROR, e.message, e.details)

        labels = canonical.split(".")
        if len(labels) < 2 or len(canonical) > MAX_DOMAIN_LENGTH:
            return self._invalid(
                DomainValidationErrorCode.INVALID_LABEL,
                "Domain must have at least two labels and at most 253 characters",
                {"raw_input": raw_domain, "canonical": canonical},
            )

        bad_labels = [label for label in labels if not LABEL_PATTERN.match(label)]
        if bad_labels:
            return self._invalid(
                DomainValidationErrorCode.INVALID_LABEL,
                "Domain contains invalid labels",
                {"raw_input": raw_domain, "labels": bad_labels},
            )

        if labels[-1].isdigit():
            return self._invalid(
                DomainValidationErrorCode.INVALID_LABEL,
                "Top-level label cannot be numeric",
                {"raw_input": raw_domain, "tld": labels[-1]},
            )

        return DomainValidationResult(valid=True, canonical_domain=canonical, error=None)

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Convert domain to canonical form (lowercase, IDNA-encoded).

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower()

        if any(ord(c) > 127 for c in domain_lower):
            try:
                return idna.encode(domain_lower, uts46=True).decode("ascii")
            except idna.IDNAError as e:
                raise ValidationError(
                    code=DomainValidationErrorCode.IDNA_ERROR.value,
                    message=f"IDNA encoding failed: {e}",
                    details={"domain": domain, "idna_error": str(e)},
                )
        return domain_lower

    def require_valid(self, raw_domain: str) -> str:
        """
        Canonical form of ``raw_domain``.

        Raises:
            ValidationError: If the domain is invalid
        """
        result = self.validate(raw_domain)
        if not result.valid:
            raise ValidationError(
                code=result.error.code.value,
                message=result.error.message,
                details=result.error.details,
            )
        return result.canonical_domain

    def _invalid(
        self,
        code: DomainValidationErrorCode,
        message: str,
        details: dict,
    ) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_domain=None,
            error=DomainValidationError(code=code, message=message, details=details),
        )

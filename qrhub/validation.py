"""Per-field rule chains.

A chain maps a field name to a list of ``Rule``s. ``check_fields`` runs every
chain against a plain dict of submitted values and collects all failures
before raising, so callers get the full list of problems in one response.
Rules for a field stop at that field's first failure.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable

from qrhub.allocator import LINK_CODE, PORTAL_SLUG
from qrhub.errors import ValidationFailed
from qrhub.models import SecurityKind
from qrhub.url_guard import MESSAGES as URL_MESSAGES
from qrhub.url_guard import validate_redirect_target

HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
SYMBOL_PATTERN = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class Rule:
    check: Callable[[Any, dict], bool]
    message: str | Callable[[Any], str]
    # Run even when the value is missing/None
    required: bool = False

    def explain(self, value) -> str:
        return self.message(value) if callable(self.message) else self.message


def _present(value) -> bool:
    return value is not None and (not isinstance(value, str) or value.strip() != "")


def required(message: str) -> Rule:
    return Rule(lambda v, _: _present(v), message, required=True)


def length(lo: int, hi: int, message: str) -> Rule:
    return Rule(lambda v, _: lo <= len(v.strip()) <= hi, message)


def max_length(hi: int, message: str) -> Rule:
    return Rule(lambda v, _: len(v) <= hi, message)


def matches(pattern: re.Pattern, message: str) -> Rule:
    return Rule(lambda v, _: bool(pattern.fullmatch(v)), message)


def is_strong_password(value: str) -> bool:
    return (
        len(value) >= 8
        and len(value.encode("utf-8")) <= 72  # bcrypt input limit
        and any(c.islower() for c in value)
        and any(c.isupper() for c in value)
        and any(c.isdigit() for c in value)
        and bool(SYMBOL_PATTERN.search(value))
    )


def _target_rule(production: bool) -> Rule:
    return Rule(
        lambda v, _: validate_redirect_target(v, production).ok,
        lambda v: URL_MESSAGES[validate_redirect_target(v, production).reason],
    )


def _network_secret_ok(value, data) -> bool:
    if data.get("security_kind") == SecurityKind.OPEN.value:
        return True
    return _present(value)


SECURITY_KINDS = {kind.value for kind in SecurityKind}

TITLE_RULES = [
    required("Title is required"),
    length(1, 100, "Title must be between 1 and 100 characters"),
]


def short_link_rules(production: bool) -> dict[str, list[Rule]]:
    return {
        "title": TITLE_RULES,
        "target_url": [required("Target URL is required"), _target_rule(production)],
        "custom_code": [
            matches(LINK_CODE.pattern, LINK_CODE.message),
        ],
    }


def short_link_update_rules(production: bool) -> dict[str, list[Rule]]:
    return {
        "title": [length(1, 100, "Title must be between 1 and 100 characters")],
        "target_url": [_target_rule(production)],
    }


def portal_rules() -> dict[str, list[Rule]]:
    return {
        "title": TITLE_RULES,
        "slug": [
            required("Slug is required"),
            matches(PORTAL_SLUG.pattern, PORTAL_SLUG.message),
        ],
        "network_name": [
            required("Network name is required"),
            length(1, 32, "Network name must be at most 32 characters"),
        ],
        "network_secret": [
            Rule(_network_secret_ok, "Password is required for secured networks", required=True),
            max_length(63, "Password must be at most 63 characters"),
        ],
        "security_kind": [
            Rule(lambda v, _: v in SECURITY_KINDS, "Invalid security type"),
        ],
        "instructions": [max_length(1000, "Instructions must be at most 1000 characters")],
    }


def portal_update_rules() -> dict[str, list[Rule]]:
    return {
        "title": [length(1, 100, "Title must be between 1 and 100 characters")],
        "network_name": [length(1, 32, "Network name must be at most 32 characters")],
        "network_secret": [max_length(63, "Password must be at most 63 characters")],
        "security_kind": [
            Rule(lambda v, _: v in SECURITY_KINDS, "Invalid security type"),
        ],
        "instructions": [max_length(1000, "Instructions must be at most 1000 characters")],
    }


REGISTRATION_RULES = {
    "handle": [
        required("Username is required"),
        length(3, 30, "Username must be between 3 and 30 characters"),
        matches(HANDLE_PATTERN, "Username can only contain letters, numbers, hyphens, and underscores"),
    ],
    "password": [
        required("Password is required"),
        Rule(
            lambda v, _: is_strong_password(v),
            "Password must be at least 8 characters long and contain uppercase, "
            "lowercase, number, and special character",
        ),
    ],
}


def check_fields(rules: dict[str, list[Rule]], data: dict) -> list[dict]:
    """Return every failure as ``{"field", "message"}``; empty list if clean."""
    errors = []
    for field, chain in rules.items():
        value = data.get(field)
        for rule in chain:
            if value is None and not rule.required:
                continue
            if not rule.check(value, data):
                errors.append({"field": field, "message": rule.explain(value)})
                break
    return errors


def ensure_valid(rules: dict[str, list[Rule]], data: dict) -> None:
    errors = check_fields(rules, data)
    if errors:
        raise ValidationFailed(errors)

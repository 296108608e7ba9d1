from collections.abc import Callable
from dataclasses import dataclass
import re

from roster_recon.schemas import EntityType, Record, ValidationResult


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,14}$")
WHITESPACE = re.compile(r"\s")


@dataclass(frozen=True)
class EntityRules:
    entity_type: EntityType
    trimmed_fields: tuple[str, ...]
    passthrough_defaults: dict[str, object]
    validator: Callable[[Record], list[str]]


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _is_blank(value: object) -> bool:
    return not _text(value).strip()


def _check_required(record: Record, required: list[tuple[str, str]], issues: list[str]) -> None:
    for field_name, label in required:
        if _is_blank(record.fields.get(field_name)):
            issues.append(f"{label} is required")


def _check_email(record: Record, issues: list[str]) -> None:
    email = _text(record.fields.get("email")).strip()
    if email and not EMAIL_PATTERN.match(email):
        issues.append("Invalid email format")


def _check_phone(record: Record, field_name: str, label: str, issues: list[str]) -> None:
    raw = _text(record.fields.get(field_name))
    if not raw.strip():
        return
    if not PHONE_PATTERN.match(WHITESPACE.sub("", raw)):
        issues.append(f"Invalid {label} format")


def _student_issues(record: Record) -> list[str]:
    issues: list[str] = []
    _check_required(
        record,
        [
            ("name", "Name"),
            ("email", "Email"),
            ("roll_number", "Roll number"),
            ("class_name", "Class name"),
        ],
        issues,
    )
    _check_email(record, issues)
    _check_phone(record, "whatsapp_number", "WhatsApp number", issues)
    return issues


def _teacher_issues(record: Record) -> list[str]:
    issues: list[str] = []
    _check_required(record, [("name", "Name"), ("email", "Email")], issues)
    _check_email(record, issues)
    _check_phone(record, "phone", "phone number", issues)
    return issues


RULES: dict[EntityType, EntityRules] = {
    EntityType.STUDENT: EntityRules(
        entity_type=EntityType.STUDENT,
        trimmed_fields=(
            "name",
            "email",
            "roll_number",
            "class_name",
            "father_name",
            "mother_name",
            "whatsapp_number",
            "address",
        ),
        passthrough_defaults={"is_active": True},
        validator=_student_issues,
    ),
    EntityType.TEACHER: EntityRules(
        entity_type=EntityType.TEACHER,
        trimmed_fields=(
            "name",
            "email",
            "phone",
            "address",
            "qualification",
            "experience",
            "department",
        ),
        passthrough_defaults={"subject_ids": [], "is_active": True},
        validator=_teacher_issues,
    ),
}


def rules_for(entity_type: EntityType) -> EntityRules:
    return RULES[entity_type]


def validate(record: Record) -> ValidationResult:
    issues = rules_for(record.entity_type).validator(record)
    return ValidationResult(issues=tuple(issues))


def normalize(record: Record) -> dict[str, object]:
    rules = rules_for(record.entity_type)
    normalized: dict[str, object] = {}
    for field_name in rules.trimmed_fields:
        normalized[field_name] = _text(record.fields.get(field_name)).strip()
    for field_name, default in rules.passthrough_defaults.items():
        value = record.fields.get(field_name)
        if value is None:
            # Copy mutable defaults so callers never share a list.
            value = list(default) if isinstance(default, list) else default
        normalized[field_name] = value
    return normalized


def needs_update(record: Record) -> bool:
    normalized = normalize(record)
    for field_name in rules_for(record.entity_type).trimmed_fields:
        current = record.fields.get(field_name)
        # Missing, empty and non-text values are not drift.
        if not isinstance(current, str) or not current:
            continue
        if current != normalized[field_name]:
            return True
    return False

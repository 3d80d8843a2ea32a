"""
Entity Type Validation

Per-type rules evaluated before an entity is written. Every violation is
collected so the caller sees all problems at once.
"""
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ValidationError
from ..models.entity import EntityDefinition, EntityTypeValidationRule
from .namespace import namespace_clause

RULE_KINDS = {
    "required",
    "min_length",
    "max_length",
    "pattern",
    "allowed_values",
    "unique_across_types",
}

RULE_FIELDS = {"name", "description", "aliases", "tags"}

# Parameter each rule kind needs, and the type it must have
_REQUIRED_PARAMS = {
    "min_length": ("value", int),
    "max_length": ("value", int),
    "pattern": ("regex", str),
    "allowed_values": ("values", list),
    "unique_across_types": ("types", list),
}


def check_rule_definitions(rules: List[Dict[str, Any]]) -> None:
    """Reject malformed rule sets when they are saved, not when they run."""
    problems = []
    for i, rule in enumerate(rules):
        kind = rule.get("rule")
        field = rule.get("field")
        if kind not in RULE_KINDS:
            problems.append(f"rule {i}: unknown rule kind '{kind}'")
            continue
        if field not in RULE_FIELDS:
            problems.append(f"rule {i}: unknown field '{field}'")
        if kind in _REQUIRED_PARAMS:
            key, expected = _REQUIRED_PARAMS[kind]
            value = (rule.get("params") or {}).get(key)
            if not isinstance(value, expected) or isinstance(value, bool):
                problems.append(f"rule {i}: '{kind}' needs params.{key} ({expected.__name__})")
            elif kind == "pattern":
                try:
                    re.compile(value)
                except re.error as e:
                    problems.append(f"rule {i}: invalid regex: {e}")
        if kind == "unique_across_types" and field != "name":
            problems.append(f"rule {i}: 'unique_across_types' only applies to name")
    if problems:
        raise ValidationError("Invalid validation rules: " + "; ".join(problems), problems)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return len(value) == 0


def _values(value: Any) -> List[str]:
    """Scalar fields are checked as one value, list fields element-wise."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _default_message(field: str, kind: str, params: Dict[str, Any]) -> str:
    if kind == "required":
        return f"{field} is required"
    if kind == "min_length":
        return f"{field} must be at least {params['value']} characters"
    if kind == "max_length":
        return f"{field} must be at most {params['value']} characters"
    if kind == "pattern":
        return f"{field} must match {params['regex']}"
    if kind == "allowed_values":
        return f"{field} must be one of: {', '.join(map(str, params['values']))}"
    return f"{field} already exists on an entity of type {', '.join(params['types'])}"


async def _name_taken(
    session: AsyncSession,
    name: str,
    types: List[str],
    own_type: str,
    namespace: Optional[str],
    entity_id: Optional[str],
) -> bool:
    other_types = [t for t in types if t != own_type]
    if not other_types:
        return False
    stmt = select(EntityDefinition.id).where(
        EntityDefinition.name == name,
        EntityDefinition.type.in_(other_types),
        namespace_clause(EntityDefinition.namespace, namespace),
    )
    if entity_id:
        stmt = stmt.where(EntityDefinition.id != entity_id)
    return (await session.execute(stmt.limit(1))).first() is not None


async def validate_entity(
    session: AsyncSession,
    data: Dict[str, Any],
    *,
    namespace: Optional[str],
    entity_id: Optional[str] = None,
) -> None:
    """
    Check an entity's fields against the rules stored for its type.

    `data` holds name, type, description, aliases and tags as they will
    be written. Raises ValidationError listing every violation.
    """
    result = await session.execute(
        select(EntityTypeValidationRule).where(
            EntityTypeValidationRule.entity_type == data["type"]
        )
    )
    rule_set = result.scalar_one_or_none()
    if rule_set is None:
        return

    violations = []
    for rule in rule_set.rules:
        field, kind = rule["field"], rule["rule"]
        params = rule.get("params") or {}
        value = data.get(field)
        failed = False

        if kind == "required":
            failed = _is_empty(value)
        elif _is_empty(value):
            # Optional fields that are absent only fail "required"
            continue
        elif kind == "min_length":
            failed = any(len(v) < params["value"] for v in _values(value))
        elif kind == "max_length":
            failed = any(len(v) > params["value"] for v in _values(value))
        elif kind == "pattern":
            failed = any(re.fullmatch(params["regex"], v) is None for v in _values(value))
        elif kind == "allowed_values":
            allowed = set(map(str, params["values"]))
            failed = any(v not in allowed for v in _values(value))
        elif kind == "unique_across_types":
            failed = await _name_taken(
                session, str(value), params["types"], data["type"], namespace, entity_id
            )

        if failed:
            violations.append(rule.get("errorMessage") or _default_message(field, kind, params))

    if violations:
        raise ValidationError("; ".join(violations), violations)

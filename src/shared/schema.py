"""JSON Schema validation utilities."""

from typing import Any

from jsonschema import Draft7Validator
from pydantic import BaseModel


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def tool_schema(args_model: type[BaseModel]) -> dict[str, Any]:
    """
    Build the parameter schema of a tool from its argument model.

    Pydantic titles are dropped and ``Optional[X]`` fields are collapsed from
    ``anyOf`` to a nullable ``X`` so the schema stays small and readable for
    the model while still accepting an explicit null.
    """
    schema = _simplify(args_model.model_json_schema())
    schema.setdefault("properties", {})
    schema["type"] = "object"
    return schema


def _simplify(node: Any) -> Any:
    if isinstance(node, list):
        return [_simplify(item) for item in node]
    if not isinstance(node, dict):
        return node

    any_of = node.get("anyOf")
    if any_of is not None:
        non_null = [option for option in any_of if option.get("type") != "null"]
        nullable = len(non_null) < len(any_of)
        if len(non_null) == 1 and isinstance(non_null[0].get("type"), str):
            merged = {k: v for k, v in node.items() if k != "anyOf"}
            merged.update(non_null[0])
            if nullable:
                merged["type"] = [merged["type"], "null"]
                if "enum" in merged:
                    merged["enum"] = [*merged["enum"], None]
            node = merged

    simplified: dict[str, Any] = {}
    for key, value in node.items():
        if key == "title":
            continue
        if key == "default" and value is None:
            continue
        if key == "properties":
            simplified[key] = {name: _simplify(prop) for name, prop in value.items()}
        else:
            simplified[key] = _simplify(value)
    return simplified

"""
Attribute processors - edit item attributes or resource attributes.

``attributes`` applies actions to span / log record / metric point
attributes. ``resource`` applies the same actions to resource attributes.

Actions (applied in order):
    insert   set ``key`` only if absent
    update   set ``key`` only if present
    upsert   always set ``key``
    delete   remove ``key`` (or every key matching ``pattern``)
    hash     replace the value with its SHA-256 hex digest
    extract  apply ``pattern`` (named groups) to the value of ``key`` and
             upsert one attribute per group

For insert/update/upsert the new value is ``value`` or, with
``from_attribute``, the current value of another attribute (skipped if that
attribute is absent).

Items are never modified in place: changed items are copied.
"""

import hashlib
import re
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field, model_validator

from ..model.types import Resource, TelemetryBatch, validate_attributes
from .base import Processor

ActionName = Literal["insert", "update", "upsert", "delete", "hash", "extract"]


class AttributeAction(BaseModel):
    key: str | None = None
    action: ActionName
    value: Any = None
    from_attribute: str | None = None
    pattern: str | None = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_action(self) -> "AttributeAction":
        if self.pattern:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern '{self.pattern}': {e}") from e
        if self.action in ("insert", "update", "upsert"):
            if not self.key:
                raise ValueError(f"'{self.action}' requires 'key'")
            if self.value is None and self.from_attribute is None:
                raise ValueError(f"'{self.action}' requires 'value' or 'from_attribute'")
            if self.value is not None:
                validate_attributes({self.key: self.value})
        elif self.action == "delete":
            if not self.key and not self.pattern:
                raise ValueError("'delete' requires 'key' or 'pattern'")
        elif self.action == "hash":
            if not self.key:
                raise ValueError("'hash' requires 'key'")
        elif self.action == "extract":
            if not self.key or not self.pattern:
                raise ValueError("'extract' requires 'key' and 'pattern'")
            if not re.compile(self.pattern).groupindex:
                raise ValueError("'extract' pattern must have named groups")
        return self


class AttributesSettings(BaseModel):
    actions: list[AttributeAction] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_not_empty(self) -> "AttributesSettings":
        if not self.actions:
            raise ValueError("at least one action is required")
        return self


def _hash_value(value: Any) -> str:
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()


def apply_actions(attributes: dict[str, Any], actions: list[AttributeAction]) -> dict[str, Any]:
    """Return a new attribute dict with every action applied in order."""
    result = dict(attributes)
    for act in actions:
        match act.action:
            case "insert" | "update" | "upsert":
                if act.from_attribute is not None:
                    if act.from_attribute not in result:
                        continue
                    new_value = result[act.from_attribute]
                else:
                    new_value = act.value
                present = act.key in result
                if (act.action == "insert" and present) or (act.action == "update" and not present):
                    continue
                result[act.key] = new_value

            case "delete":
                if act.key:
                    result.pop(act.key, None)
                if act.pattern:
                    regex = re.compile(act.pattern)
                    for key in [k for k in result if regex.search(k)]:
                        del result[key]

            case "hash":
                if act.key in result:
                    result[act.key] = _hash_value(result[act.key])

            case "extract":
                if act.key not in result:
                    continue
                match_ = re.search(act.pattern, str(result[act.key]))
                if match_:
                    for group, group_value in match_.groupdict().items():
                        if group_value is not None:
                            result[group] = group_value
    return result


class AttributesProcessor(Processor):
    type_name: ClassVar[str] = "attributes"
    settings_model: ClassVar[type[BaseModel]] = AttributesSettings

    def process(self, batch: TelemetryBatch) -> TelemetryBatch:
        items = []
        for item in batch:
            updated = apply_actions(item.attributes, self.settings.actions)
            if updated != item.attributes:
                item = item.model_copy(update={"attributes": updated})
            items.append(item)
        return batch.with_items(items)


class ResourceProcessor(Processor):
    type_name: ClassVar[str] = "resource"
    settings_model: ClassVar[type[BaseModel]] = AttributesSettings

    def process(self, batch: TelemetryBatch) -> TelemetryBatch:
        # Items of one request share Resource objects, cache per original
        cache: dict[int, Resource] = {}
        items = []
        for item in batch:
            original = item.resource
            resource = cache.get(id(original))
            if resource is None:
                updated = apply_actions(original.attributes, self.settings.actions)
                resource = original if updated == original.attributes else Resource(attributes=updated)
                cache[id(original)] = resource
            if resource is not original:
                item = item.model_copy(update={"resource": resource})
            items.append(item)
        return batch.with_items(items)

"""
ovas/engine/ingest.py

Purpose:
    Turns the hierarchical scan configuration message into flat preferences.

Semantics:
    - Reserved envelope members (created, message_type, group_id,
      message_id) never become preferences.
    - Scalars: strings as-is, booleans as "yes"/"no", integers as decimal
      text. No other coercions; floats and nulls are skipped.
    - Lists are joined with ","; objects are handled only when a rule names
      them. Renames and separators come from MEMBER_RULES.
    - All-or-nothing: values are staged and committed only once the whole
      message has been read, so a malformed message leaves the store as it
      was.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ovas.base.prefs import PreferenceStore
from ovas.data.messages import RESERVED_MEMBERS
from ovas.errors import MalformedConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberRule:
    """How one named list/object member maps onto a preference."""
    shape: str              # "list" or "object"
    key: str                # preference name to store under
    separator: str = ","
    path: Tuple[str, ...] = ()   # object members: where the element list lives
    field: Optional[str] = None  # object members: element field to collect


MEMBER_RULES: Dict[str, MemberRule] = {
    "hosts": MemberRule(shape="list", key="TARGET"),
    "ports": MemberRule(shape="list", key="port_range"),
    "plugins": MemberRule(
        shape="object", key="plugin_set", separator=";", path=("single_vts",), field="oid"
    ),
}


class _Unsupported(Exception):
    """Value kind without a serialisation rule."""


def serialize_scalar(value: Any) -> str:
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    raise _Unsupported(type(value).__name__)


def parse_message(message: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(message, Mapping):
        doc = message
    else:
        try:
            doc = json.loads(message)
        except (TypeError, ValueError) as exc:
            raise MalformedConfiguration(f"configuration is not valid JSON: {exc}") from exc
    if not isinstance(doc, Mapping):
        raise MalformedConfiguration(
            f"configuration root must be an object, got {type(doc).__name__}"
        )
    return doc


class PreferenceIngestor:
    """Walks a configuration document into a PreferenceStore."""

    def __init__(self, prefs: PreferenceStore, rules: Optional[Mapping[str, MemberRule]] = None):
        self.prefs = prefs
        self.rules = dict(MEMBER_RULES if rules is None else rules)

    def ingest(self, message: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, str]:
        """
        Apply ``message`` to the preference store.

        Returns the preferences written. Raises MalformedConfiguration, in
        which case nothing is written.
        """
        doc = parse_message(message)
        members = [name for name in doc if name not in RESERVED_MEMBERS]
        if not members:
            raise MalformedConfiguration("configuration has no usable members")

        staged: Dict[str, str] = {}
        for name in members:
            logger.debug(f"Processing {name}")
            value = doc[name]
            if isinstance(value, Mapping):
                self._object_member(name, value, staged)
            elif isinstance(value, list):
                self._list_member(name, value, staged)
            else:
                self._scalar_member(name, value, staged)

        self.prefs.update(staged)
        for key, value in staged.items():
            logger.debug(f"{key} -> {value}")
        return staged

    def _scalar_member(self, name: str, value: Any, staged: Dict[str, str]) -> None:
        try:
            staged[name] = serialize_scalar(value)
        except _Unsupported as exc:
            logger.warning(f"Skipping {name}: no serialisation for {exc} values")

    def _list_member(self, name: str, values: list, staged: Dict[str, str]) -> None:
        rule = self.rules.get(name)
        key = rule.key if rule is not None and rule.shape == "list" else name
        separator = rule.separator if rule is not None and rule.shape == "list" else ","
        if not values:
            return
        try:
            staged[key] = separator.join(serialize_scalar(item) for item in values)
        except _Unsupported as exc:
            raise MalformedConfiguration(
                f"list member {name} holds a {exc} element", details={"member": name}
            ) from exc

    def _object_member(self, name: str, value: Mapping[str, Any], staged: Dict[str, str]) -> None:
        rule = self.rules.get(name)
        if rule is None or rule.shape != "object":
            return

        elements: Any = value
        for step in rule.path:
            elements = elements.get(step) if isinstance(elements, Mapping) else None
        if elements is None:
            return
        if not isinstance(elements, list):
            raise MalformedConfiguration(
                f"{name}.{'.'.join(rule.path)} must be a list", details={"member": name}
            )

        collected = []
        for index, element in enumerate(elements):
            item = element.get(rule.field) if isinstance(element, Mapping) else None
            if not isinstance(item, str):
                raise MalformedConfiguration(
                    f"{name}.{'.'.join(rule.path)}[{index}] has no {rule.field}",
                    details={"member": name, "index": index},
                )
            collected.append(item)

        if collected:
            staged[rule.key] = rule.separator.join(collected)

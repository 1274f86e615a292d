"""Per-request runtime context carried in request metadata headers."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from oamguard.policy_engine import (
    AuthorizationContext,
    PolicyContext,
    SubqueryPolicy,
    ToolContract,
    ToolIntent,
)

__all__ = ["QueryRuntimeContext", "parse_tool_intent"]

_SESSION_ID_HEADER = "x-roam-session-id"
_USER_ID_HEADER = "x-roam-user-id"
_ORGANIZATION_ID_HEADER = "x-roam-organization-id"
_TOOL_NAME_HEADER = "x-roam-tool-name"
_TOOL_INTENT_HEADER = "x-roam-tool-intent"
_GRANTS_HEADER = "x-roam-grants"
_RUNTIME_AUGMENTATION_ID_HEADER = "x-roam-runtime-augmentation-id"
_RUNTIME_AUGMENTATION_KEY_HEADER = "x-roam-runtime-augmentation-key"
_DOMAIN_TAGS_HEADER = "x-roam-domain-tags"
_TABLE_NAMES_HEADER = "x-roam-table-names"
_PLAN_ID_HEADER = "x-roam-plan-id"
_STEP_INDEX_HEADER = "x-roam-step-index"
_TRACE_ID_HEADER = "x-roam-trace-id"
_SPAN_ID_HEADER = "x-roam-span-id"

_U32_MAX = 2**32 - 1
_UNSIGNED = re.compile(r"\+?[0-9]+")

_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)

_INTENT_ALIASES = {
    **dict.fromkeys(
        ("readselect", "read_select", "read-select", "read"), ToolIntent.READ_SELECT
    ),
    **dict.fromkeys(
        ("writeinsert", "write_insert", "write-insert", "insert"),
        ToolIntent.WRITE_INSERT,
    ),
    **dict.fromkeys(
        ("writeupdate", "write_update", "write-update", "update"),
        ToolIntent.WRITE_UPDATE,
    ),
    **dict.fromkeys(
        ("writedelete", "write_delete", "write-delete", "delete"),
        ToolIntent.WRITE_DELETE,
    ),
    "admin": ToolIntent.ADMIN,
}

_INTENT_EVENT_NAMES = {
    ToolIntent.READ_SELECT: "read_select",
    ToolIntent.WRITE_INSERT: "write_insert",
    ToolIntent.WRITE_UPDATE: "write_update",
    ToolIntent.WRITE_DELETE: "write_delete",
    ToolIntent.ADMIN: "admin",
}

_DEFAULT_TOOL_NAMES = {
    ToolIntent.READ_SELECT: "sql.read_select",
    ToolIntent.WRITE_INSERT: "sql.write_insert",
    ToolIntent.WRITE_UPDATE: "sql.write_update",
    ToolIntent.WRITE_DELETE: "sql.write_delete",
    ToolIntent.ADMIN: "sql.admin",
}

MetadataValue = Union[str, bytes]


def parse_tool_intent(value: str) -> Optional[ToolIntent]:
    """Parse a tool intent header value, accepting several spellings."""
    return _INTENT_ALIASES.get(value.strip().translate(_ASCII_LOWER))


def _is_visible_ascii(text: str) -> bool:
    return all(ch == "\t" or " " <= ch <= "~" for ch in text)


def _ascii_value(raw: MetadataValue) -> Optional[str]:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("ascii")
        except UnicodeDecodeError:
            return None
    if not _is_visible_ascii(raw):
        return None
    value = raw.strip()
    return value or None


def _csv_value(raw: Optional[str]) -> list[str]:
    if raw is None:
        return []
    return [entry for entry in (part.strip() for part in raw.split(",")) if entry]


def _parse_step_index(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    text = raw.strip()
    if not _UNSIGNED.fullmatch(text):
        return None
    number = int(text)
    return number if number <= _U32_MAX else None


@dataclass
class QueryRuntimeContext:
    """Who is asking, through which tool, and under which trace."""

    session_id: Optional[str] = None
    agent_id: Optional[str] = None
    agent_version: Optional[str] = None
    schema_mode: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_intent: Optional[ToolIntent] = None
    grants: list[str] = field(default_factory=list)
    runtime_augmentation_id: Optional[str] = None
    runtime_augmentation_key: Optional[str] = None
    domain_tags: list[str] = field(default_factory=list)
    table_names: list[str] = field(default_factory=list)
    plan_id: Optional[str] = None
    step_index: Optional[int] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None

    @classmethod
    def from_metadata(
        cls, metadata: Mapping[str, MetadataValue]
    ) -> "QueryRuntimeContext":
        """Build a context from request headers; header names are case-insensitive."""
        headers = {key.lower(): value for key, value in metadata.items()}

        def get(key: str) -> Optional[str]:
            raw = headers.get(key)
            return None if raw is None else _ascii_value(raw)

        intent_raw = get(_TOOL_INTENT_HEADER)
        return cls(
            session_id=get(_SESSION_ID_HEADER),
            user_id=get(_USER_ID_HEADER),
            organization_id=get(_ORGANIZATION_ID_HEADER),
            tool_name=get(_TOOL_NAME_HEADER),
            tool_intent=None if intent_raw is None else parse_tool_intent(intent_raw),
            grants=_csv_value(get(_GRANTS_HEADER)),
            runtime_augmentation_id=get(_RUNTIME_AUGMENTATION_ID_HEADER),
            runtime_augmentation_key=get(_RUNTIME_AUGMENTATION_KEY_HEADER),
            domain_tags=_csv_value(get(_DOMAIN_TAGS_HEADER)),
            table_names=_csv_value(get(_TABLE_NAMES_HEADER)),
            plan_id=get(_PLAN_ID_HEADER),
            step_index=_parse_step_index(get(_STEP_INDEX_HEADER)),
            trace_id=get(_TRACE_ID_HEADER),
            span_id=get(_SPAN_ID_HEADER),
        )

    def has_values(self) -> bool:
        """True when any field is set."""
        return any(
            value is not None if not isinstance(value, list) else bool(value)
            for value in (getattr(self, f.name) for f in dataclasses.fields(self))
        )

    def policy_context(self) -> Optional[PolicyContext]:
        """Policy context for the requested tool, or None if no tool info was given."""
        if self.tool_name is None and self.tool_intent is None and not self.grants:
            return None
        intent = self.tool_intent or ToolIntent.READ_SELECT
        name = self.tool_name if self.tool_name is not None else _DEFAULT_TOOL_NAMES[intent]
        return PolicyContext(
            tool=ToolContract(name, intent, SubqueryPolicy.deny_all()),
            authorization=AuthorizationContext(
                allowed_intents=[intent], grants=list(self.grants)
            ),
        )

    def event_metadata(self) -> dict[str, str]:
        """Flat string map of the set fields, for attaching to audit events."""
        metadata: dict[str, str] = {}
        optional = {
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "agent_version": self.agent_version,
            "schema_mode": self.schema_mode,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "tool_name": self.tool_name,
            "tool_intent": (
                None
                if self.tool_intent is None
                else _INTENT_EVENT_NAMES[self.tool_intent]
            ),
            "runtime_augmentation_id": self.runtime_augmentation_id,
            "runtime_augmentation_key": self.runtime_augmentation_key,
        }
        metadata.update((k, v) for k, v in optional.items() if v is not None)

        for key, values in (
            ("grants", self.grants),
            ("domain_tags", self.domain_tags),
            ("table_names", self.table_names),
        ):
            if values:
                metadata[key] = ",".join(values)

        if self.plan_id is not None:
            metadata["plan_id"] = self.plan_id
        if self.step_index is not None:
            metadata["step_index"] = str(self.step_index)
        if self.trace_id is not None:
            metadata["trace_id"] = self.trace_id
        if self.span_id is not None:
            metadata["span_id"] = self.span_id
        return metadata

    def with_registered_agent(
        self, agent_id: str, agent_version: str, schema_mode: str
    ) -> "QueryRuntimeContext":
        """Return a copy annotated with the registered agent's identity."""
        return dataclasses.replace(
            self,
            agent_id=agent_id,
            agent_version=agent_version,
            schema_mode=schema_mode,
        )
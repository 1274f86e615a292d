import pytest

from oamguard.policy_engine import ToolIntent
from oamguard.runtime_context import QueryRuntimeContext, parse_tool_intent


def test_parses_metadata_into_structured_fields():
    metadata = {
        "x-roam-session-id": "session-123",
        "x-roam-user-id": "user-9",
        "x-roam-organization-id": "finance",
        "x-roam-tool-name": "finance.query",
        "x-roam-tool-intent": "read_select",
        "x-roam-grants": "read:ledger,read:org",
        "x-roam-runtime-augmentation-id": "hook-1",
        "x-roam-runtime-augmentation-key": "finance-default",
        "x-roam-domain-tags": "finance,accounting",
        "x-roam-table-names": "ledger_entries,organizations",
    }
    context = QueryRuntimeContext.from_metadata(metadata)

    assert context.session_id == "session-123"
    assert context.user_id == "user-9"
    assert context.organization_id == "finance"
    assert context.tool_name == "finance.query"
    assert context.tool_intent is ToolIntent.READ_SELECT
    assert context.grants == ["read:ledger", "read:org"]
    assert context.runtime_augmentation_id == "hook-1"
    assert context.runtime_augmentation_key == "finance-default"
    assert context.domain_tags == ["finance", "accounting"]
    assert context.table_names == ["ledger_entries", "organizations"]


def test_builds_policy_and_event_metadata():
    context = QueryRuntimeContext(
        tool_name="finance.query",
        tool_intent=ToolIntent.READ_SELECT,
        grants=["read:ledger"],
        runtime_augmentation_key="finance-default",
        session_id="session-123",
    ).with_registered_agent("agent-9", "2.4.1", "HYBRID")

    policy_context = context.policy_context()
    assert policy_context is not None
    assert policy_context.tool.name == "finance.query"
    assert policy_context.tool.intent is ToolIntent.READ_SELECT
    assert policy_context.authorization.grants == ["read:ledger"]

    metadata = context.event_metadata()
    assert metadata["session_id"] == "session-123"
    assert metadata["agent_id"] == "agent-9"
    assert metadata["agent_version"] == "2.4.1"
    assert metadata["schema_mode"] == "HYBRID"
    assert metadata["runtime_augmentation_key"] == "finance-default"
    assert metadata["tool_name"] == "finance.query"
    assert metadata["tool_intent"] == "read_select"
    assert metadata["grants"] == "read:ledger"


def test_parses_trace_and_span_id_from_metadata():
    context = QueryRuntimeContext.from_metadata(
        {"x-roam-trace-id": "trace-abc-123", "x-roam-span-id": "span-xyz-456"}
    )
    assert context.trace_id == "trace-abc-123"
    assert context.span_id == "span-xyz-456"


def test_trace_id_absent_when_header_not_set():
    context = QueryRuntimeContext.from_metadata({})
    assert context.trace_id is None
    assert context.span_id is None


def test_trace_id_in_event_metadata():
    context = QueryRuntimeContext(
        trace_id="trace-abc-123", span_id="span-xyz-456", session_id="sess-99"
    )
    metadata = context.event_metadata()
    assert metadata["trace_id"] == "trace-abc-123"
    assert metadata["span_id"] == "span-xyz-456"


def test_trace_fields_contribute_to_has_values():
    assert QueryRuntimeContext(trace_id="trace-abc-123").has_values() is True
    assert QueryRuntimeContext().has_values() is False


def test_list_fields_contribute_to_has_values():
    assert QueryRuntimeContext(table_names=["t"]).has_values() is True
    assert QueryRuntimeContext(step_index=0).has_values() is True


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("ReadSelect", ToolIntent.READ_SELECT),
        ("read-select", ToolIntent.READ_SELECT),
        ("  READ  ", ToolIntent.READ_SELECT),
        ("insert", ToolIntent.WRITE_INSERT),
        ("write_update", ToolIntent.WRITE_UPDATE),
        ("WriteDelete", ToolIntent.WRITE_DELETE),
        ("admin", ToolIntent.ADMIN),
        ("select", None),
        ("", None),
    ],
)
def test_parse_tool_intent(raw, expected):
    assert parse_tool_intent(raw) == expected


def test_blank_and_empty_csv_entries_are_dropped():
    context = QueryRuntimeContext.from_metadata(
        {"x-roam-grants": " a , ,b,", "x-roam-user-id": "   "}
    )
    assert context.grants == ["a", "b"]
    assert context.user_id is None


def test_header_names_are_case_insensitive_and_bytes_accepted():
    context = QueryRuntimeContext.from_metadata(
        {"X-Roam-Session-Id": b"sess-1", "x-roam-plan-id": "plan-7"}
    )
    assert context.session_id == "sess-1"
    assert context.plan_id == "plan-7"


def test_non_ascii_header_value_is_ignored():
    context = QueryRuntimeContext.from_metadata({"x-roam-user-id": "usér"})
    assert context.user_id is None


@pytest.mark.parametrize(
    "raw, expected",
    [(" 3 ", 3), ("+4", 4), ("-1", None), ("abc", None), ("4294967296", None),
     ("4294967295", 4294967295)],
)
def test_step_index_parsing(raw, expected):
    context = QueryRuntimeContext.from_metadata({"x-roam-step-index": raw})
    assert context.step_index == expected


def test_step_index_in_event_metadata():
    metadata = QueryRuntimeContext(plan_id="p1", step_index=2).event_metadata()
    assert metadata == {"plan_id": "p1", "step_index": "2"}


def test_policy_context_none_without_tool_information():
    assert QueryRuntimeContext(session_id="s").policy_context() is None


def test_policy_context_uses_default_tool_name_for_intent():
    policy_context = QueryRuntimeContext(
        tool_intent=ToolIntent.WRITE_DELETE
    ).policy_context()
    assert policy_context.tool.name == "sql.write_delete"
    assert policy_context.authorization.allowed_intents == [ToolIntent.WRITE_DELETE]


def test_policy_context_defaults_to_read_select_for_grants_only():
    policy_context = QueryRuntimeContext(grants=["g"]).policy_context()
    assert policy_context.tool.intent is ToolIntent.READ_SELECT
    assert policy_context.tool.name == "sql.read_select"
    assert policy_context.tool.subquery_policy.denies_all is True


def test_with_registered_agent_leaves_original_unchanged():
    original = QueryRuntimeContext(session_id="s")
    updated = original.with_registered_agent("a", "1", "DATA_FIRST")
    assert original.agent_id is None
    assert (updated.agent_id, updated.agent_version, updated.schema_mode) == (
        "a",
        "1",
        "DATA_FIRST",
    )
    assert updated.session_id == "s"


def test_event_metadata_empty_for_empty_context():
    assert QueryRuntimeContext().event_metadata() == {}
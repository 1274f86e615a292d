# oamguard

Guard rails for agents that query databases on behalf of users.

`oamguard` provides:

- **A SQL policy engine** (`oamguard.policy_engine`). It checks a query against the
  intent of the tool that issues it. It rejects empty queries, line and block
  comments, semicolon chaining, transaction control, DDL, writes, administrative
  statements, set operations, queries without a top-level `FROM`, and a few common
  injection patterns (`' OR '1'='1`, `SLEEP(`, `WAITFOR`). Nested subqueries are
  denied unless the tool's `SubqueryPolicy` allow-lists every table they read from.
  Only the read-select intent can be allowed. The other intents are always denied
  as `"unsupported"`.
- **Runtime context** (`oamguard.runtime_context`). It turns request metadata headers
  (`x-roam-session-id`, `x-roam-tool-intent`, `x-roam-grants`, `x-roam-trace-id`, …)
  into a `QueryRuntimeContext`. From that context you can build a `PolicyContext` and
  a flat string map for audit events.
- **Policy hooks** with permissive defaults:
  - `oamguard.quota`: `OrgRateLimitProvider` and `NoOpOrgRateLimitProvider`.
  - `oamguard.schema_mode_policy`: `SchemaModePolicy` and `NoOpSchemaModePolicy`.
  - `oamguard.session_policy`: `AgentSessionPolicy` and `NoOpSessionPolicy`.
- **A per-client rate limiter** (`oamguard.rate_limit`) for concurrent connections,
  total connections and requests per sliding window.
- **An async client** (`oamguard.client`) for a JSON-over-TCP query service.

The package has no third-party dependencies.

## Installation

```
pip install .
```

## Evaluating a query

```python
from oamguard.policy_engine import ToolIntent, evaluate

decision = evaluate(
    "SELECT u.id, o.name FROM users u JOIN organizations o ON o.id = u.organization_id",
    ToolIntent.READ_SELECT,
)
assert decision.allowed
assert decision.classification == "read-select"

denied = evaluate("DROP TABLE users", ToolIntent.READ_SELECT)
print(denied.classification, denied.reason)
# ddl DDL is not allowed for read-select intent: drop
```

Nested subqueries need a full context that allow-lists their tables. Table names are
compared without regard to ASCII case. Schema-qualified (`main.organizations`) and
quoted (`"organizations"`, `[organizations]`) names are resolved to the table name.

```python
from oamguard.policy_engine import (
    AuthorizationContext, AuthorizedSubqueryShape, PolicyContext,
    SubqueryPolicy, ToolContract, ToolIntent, evaluate_with_context,
)

context = PolicyContext(
    tool=ToolContract(
        name="list-users-by-organization",
        intent=ToolIntent.READ_SELECT,
        subquery_policy=SubqueryPolicy.allow_listed(
            [AuthorizedSubqueryShape(table="organizations")]
        ),
    ),
    authorization=AuthorizationContext(allowed_intents=[ToolIntent.READ_SELECT]),
)
decision = evaluate_with_context(
    "SELECT id FROM users WHERE organization_id IN (SELECT id FROM organizations)",
    context,
)
assert decision.allowed
```

If the tool's intent is not in `allowed_intents`, the query is denied as
`"unauthorized"`.

You can add your own checks by subclassing `PolicyPlugin` and implementing
`analyze(query, context)`. Pass the plugins to `evaluate_with_plugins`. A plugin can
only deny. Plugins run only after the base engine has allowed the query, and the
first plugin that returns a denying `PolicyDecision` ends the evaluation. A plugin
that returns `None` or an allowing decision abstains.

## Runtime context

```python
from oamguard.runtime_context import QueryRuntimeContext, parse_tool_intent

ctx = QueryRuntimeContext.from_metadata({
    "x-roam-session-id": "session-123",
    "x-roam-tool-intent": "read_select",
    "x-roam-grants": "read:ledger,read:org",
})
assert ctx.grants == ["read:ledger", "read:org"]

policy = ctx.policy_context()          # None if no tool name, intent or grants
audit = ctx.with_registered_agent("agent-9", "2.4.1", "HYBRID").event_metadata()
```

How headers are read:

- Header names are matched case-insensitively.
- Values may be `str` or `bytes`. Values that are not visible ASCII are ignored.
- Values are trimmed, and empty values count as absent.
- List headers (`grants`, `domain-tags`, `table-names`) are split on commas.
- `x-roam-step-index` must be an unsigned 32-bit integer.

`parse_tool_intent` accepts spellings such as `read`, `read-select`, `readselect`,
`insert` and `admin`.

## Rate limiting

```python
import asyncio
from oamguard.rate_limit import RateLimitConfig, RateLimiter, RateLimitExceeded

async def main():
    limiter = RateLimiter(RateLimitConfig.strict())
    peer = ("127.0.0.1", 5000)
    await limiter.check_connection(peer)
    try:
        await limiter.check_request(peer)
    except RateLimitExceeded as exc:
        print(exc)
    finally:
        await limiter.close_connection(peer)
    print(await limiter.get_stats())

asyncio.run(main())
```

`RateLimitConfig()` gives the defaults: 100 requests per second, 10 concurrent
connections per client and 1000 in total. `permissive()` and `strict()` give looser
and tighter presets. A peer may be a `host:port` string or a `(host, port)` tuple.
`RateLimiter` also accepts a `clock` callable, which is useful in tests.

## Client

```python
from oamguard.client import JsonRpcClient, JsonRpcClientError

async def run():
    client = await JsonRpcClient.connect("http://127.0.0.1:7000")
    schema = await client.get_schema("main")
    result = await client.execute_query("main", "SELECT id FROM users", 100, 30)
    print(schema.database_type, result.status, result.row_count)
```

- `connect` strips an `http://` or `https://` prefix and checks that the server
  accepts a TCP connection within 0.5 seconds.
- Each call opens a new connection, sends one JSON object and reads the reply until
  the server closes the connection.
- Failures raise `JsonRpcClientError`.
- Fields missing from a reply come back empty or zero. A missing `status` in a query
  reply comes back as 3.

## What this package does not do

- It runs no server and executes no SQL. The client needs a query service that
  speaks the JSON protocol above.
- The quota, schema-mode and session hooks are abstract interfaces with no-op
  defaults. Nothing stores per-organisation settings or session records.

## Running the tests

```
pip install ".[test]"
pytest
```
# botservice

A self-contained engine for conversational bots. It holds everything a chat
bot needs in memory and drives conversations through configurable flows.

## What it provides

- **Bots, flows and steps** (`botservice.bot`, `botservice.flows`): a bot owns
  flows; each flow has an entry step, and steps are messages, decisions,
  inputs, API calls handled by agents, or AI-generated replies.
  `BotService.process_incoming_message` picks the flow (by trigger text, the
  current session, or the bot's default flow), runs the current step and
  moves the session on to the next one.
- **Conversation sessions** (`botservice.conversation`): per-user, per-bot
  sessions that expire after 24 hours and are extended on every update.
- **Smart replies** (`botservice.smart_reply`): trained intents, reply
  generation with a fallback path, keyword intent detection
  (`extract_intent`) and confidence scoring.
- **Conditionals and triggers** (`botservice.conditional`): small expressions
  such as `{{user_type}} == new`, `{{message}} contains hola` or
  `{{email}} regex <pattern>`, and triggers fired on events when their
  condition holds.
- **Long-term memory** (`botservice.memory`): per-user memories with
  retention, eviction of the oldest entry, text search and statistics.
- **Asynchronous tasks** (`botservice.tasks`): a `TaskManager` with a bounded
  queue and a pool of workers, filtering, pagination, cancellation and
  statistics.
- **Users** (`botservice.users`): user management with an audit trail.
- **Supporting pieces**: structured logging (`botservice.logger`), an
  in-memory event bus (`botservice.events`), feature flags with rules and
  percentage roll-outs (`botservice.featureflags`), health and readiness
  reports (`botservice.health`) and a no-op tracing layer
  (`botservice.tracing`).

The package has no third-party runtime dependencies.

## Examples

Evaluating a condition:

```python
from botservice.conditional import evaluate_expression

evaluate_expression("{{user_type}} == new", {"user_type": "new"})        # True
evaluate_expression("{{message}} contains hola", {"message": "¡Hola!"})  # True
```

Detecting an intent:

```python
from botservice.smart_reply import extract_intent

extract_intent("goodbye, see you")  # "goodbye"
extract_intent("xyz")               # "general"
```

Health and readiness:

```python
from botservice.health import HealthService

health = HealthService()
health.check_health()["status"]     # "healthy"
health.check_readiness()["ready"]   # True
```

Logging with key/value fields:

```python
from botservice.logger import new_logger

log = new_logger("debug")
log.info("Session updated", "user_id", "user-001", "bot_id", "bot-001")
```

Errors are raised as exceptions: asking for an expired session raises
`SessionExpiredError`, a missing or expired memory raises
`MemoryNotFoundError` or `MemoryExpiredError`, and a full task queue or an
unknown task raises an error from `TaskManager`.

## Tests

The test suite uses pytest; install the `test` extra to get it.
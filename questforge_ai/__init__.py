"""QuestForge-AI.

This package drives long-running, tool-using agent task executions to a
terminal state while streaming progress to the caller and persisting enough
state after every step to resume later.

High-level architecture
-----------------------

- ``questforge_ai.execution``:

  - ``ExecutionOrchestrator``: the state machine for one task run.
  - Checkpoint manager, retry controller, event emitter and the two-tier
    persistence service.
  - Repository interfaces and SQL implementations for results, logs, traces
    and checkpoint states.
  - The agent runtime contract and a pydantic-ai backed runtime.

- ``questforge_ai.server``:

  - FastAPI application exposing execute/resume/cancel endpoints streamed as
    Server-Sent Events, and read endpoints for results, logs and traces.

- ``questforge_ai.core``:

  - Logging configuration and Logfire monitoring hooks.

Typical workflow
----------------

1. Build an ``ExecutionRequest`` (fresh task or checkpoint resume).
2. ``ExecutionOrchestrator.prepare`` validates it and loads any checkpoint.
3. ``ExecutionOrchestrator.run`` drives the runtime and writes frames into an
   ``EventEmitter`` until exactly one ``complete`` or ``error`` event is sent. A cancelled run
   ends with an ``error`` event of type ``cancelled``.
"""

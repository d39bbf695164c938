"""Repository interfaces and SQL implementations for execution persistence.

The orchestrator never talks to a database directly. It goes through
:class:`questforge_ai.execution.persistence.PersistenceService`, which is
written against the Protocols in ``repos.interfaces``:

- execution results and their status transitions,
- execution logs (append-only),
- trace events (append-only),
- checkpoint states keyed by checkpoint id.

The SQL implementation in ``repos.sql`` commits at repository-method
boundaries, so each persisted record is written atomically.
"""

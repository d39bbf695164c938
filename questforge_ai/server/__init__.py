"""
QuestForge-AI Server Package.

This package contains the HTTP surface of the execution orchestrator.

Subpackages:
    api: FastAPI route definitions (executions, results, logs, traces, maintenance, health).
    core: Settings, database wiring and constants.
    exception_handlers: Mapping of package errors to HTTP responses.
    services: Construction of the shared orchestrator and its dependencies.
"""

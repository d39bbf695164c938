"""Cross-cutting infrastructure: logging configuration and monitoring hooks."""

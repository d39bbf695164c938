"""Service layer wiring the execution core to the HTTP surface."""

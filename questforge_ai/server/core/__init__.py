"""Server core: settings, database wiring and constants."""

"""External integrations for ORCHESTRA."""

"""Configuration, schema validation and logging setup for nsguard."""

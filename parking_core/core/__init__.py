"""Domain enums, errors and rules."""

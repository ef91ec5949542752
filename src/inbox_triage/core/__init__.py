"""Cross-cutting infrastructure: errors, logging and domain models."""

"""Shape and validation helpers."""

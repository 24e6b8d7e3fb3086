"""Engine-wide primitives (exception hierarchy)."""

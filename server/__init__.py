"""HTTP serving for event functions."""

"""Model tier assignment and recommendation."""

"""Background and operator-run jobs."""

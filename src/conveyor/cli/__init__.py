"""``conveyor`` command-line interface."""

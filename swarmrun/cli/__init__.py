"""Command-line interface for swarmrun."""

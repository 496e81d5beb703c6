"""Command-line entry point for polyscript."""

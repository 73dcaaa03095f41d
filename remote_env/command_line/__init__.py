"""Command line handlers for remote-env."""

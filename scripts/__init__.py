"""Command line tools for diagram cloud sync."""

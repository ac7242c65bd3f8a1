"""Packaged contract templates (YAML) and their loader."""

"""Slash-command plugins loaded as lightbulb extensions."""

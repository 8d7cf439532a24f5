"""Presentation layer - Terminal interface."""

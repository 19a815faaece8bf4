"""Editors that turn cut lists and timelines into output files."""

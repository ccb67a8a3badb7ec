"""Parsing, normalization and metadata helpers for the importer."""

"""Discrepancy notes (queries) and their resolution workflow."""

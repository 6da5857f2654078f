"""Fact extraction, answer synthesis and report formatting."""

"""Fixture modules imported inside matbridge worker processes."""

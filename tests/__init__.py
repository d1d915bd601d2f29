"""Test suite for matbridge."""

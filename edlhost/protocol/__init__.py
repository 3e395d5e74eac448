"""Sahara protocol definitions and wire codec."""

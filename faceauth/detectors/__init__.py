"""Integral images, Haar cascades, window scanning and face location."""

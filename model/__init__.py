"""
Model package for blood-cell screening.

The trained classifier is an opaque artifact fetched from the artifact host.
This package loads it, runs one forward pass per image and interprets the
single output probability. A deterministic demo backend keeps the repository
runnable without shipping model weights.
"""

"""
Preprocessing utilities for blood-cell screening.

Includes image decoding for uploaded files and the deterministic
resize/rescale transform that produces the classifier's input tensor.
"""

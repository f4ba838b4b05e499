"""Merge engine: uploads, page counting, layout validation, assembly, recompression."""

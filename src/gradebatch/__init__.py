"""
gradebatch

Turns heterogeneous student submissions into standardized, deduplicated
grading requests for an asynchronous bulk-inference service, and tracks
the resulting batch jobs to completion.
"""

__version__ = "0.1.0"

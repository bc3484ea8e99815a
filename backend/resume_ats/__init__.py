"""
Resume ATS analysis ledger.

Record-keeping core for resume analyses: a rolling weekly quota that gates
new analyses, and a versioned lineage of resume revisions, scores and
suggestion state per analysis.
"""

__version__ = "0.1.0"

"""
pollvault
Weighted poll lifecycle, tallying, tie-breaking and integrity commitments.
"""

__version__ = "1.0.0"

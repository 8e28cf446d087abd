"""
flashlend - atomic, uncollateralized single-call lending.
"""

__version__ = "0.1.0"

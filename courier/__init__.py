"""
Courier - authorization core for the community newsletter platform.
"""

__version__ = "0.1.0"

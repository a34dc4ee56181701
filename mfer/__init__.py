"""
mfer: Micro Frontend Runner.

Run commands across the micro frontend and library repositories listed in
~/.mfer/config.yaml, one at a time or all at once.
"""

__version__ = "3.2.0"

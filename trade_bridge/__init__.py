"""
Trade Execution Bridge
Signal gating, exchange mirroring, trailing stops and reconciliation
"""

__version__ = "0.1.0"

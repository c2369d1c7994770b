"""
Privacy Advisor core: admission control, scan job pipeline and report scoring.
"""

__version__ = '2.0.0'

"""
HTTP API for scan submission, reports and monitoring.
"""

"""
Issues Module

HTTP surface over the detection pipeline: alert listing and lifecycle,
recommendations, the remediation audit trail, and scheduler control.
"""

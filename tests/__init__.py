"""
Test package for auditsync.
"""

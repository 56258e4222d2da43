"""
HTTP front door serving the registry index with conditional-GET semantics.
"""

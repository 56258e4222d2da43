"""
repofeed: serve a GitLab host's repositories as a Composer package registry.
"""

__version__ = "0.3.0"

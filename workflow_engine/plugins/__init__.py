"""
Bundled workflow plugins.
"""

"""
Workflow services: engine, approval manager, version manager, visibility.
"""

"""
Persistence models of the workflow engine.
"""

"""
Core components shared by every workflow service: exceptions and logging.
"""

"""
Background work: resume queue, resume task and deadline scanner.
"""

from workflow_engine.tasks.queue import InMemoryResumeQueue, ResumeJob, ResumeQueue

__all__ = ["InMemoryResumeQueue", "ResumeJob", "ResumeQueue"]

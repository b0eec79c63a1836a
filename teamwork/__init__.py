"""Teamwork task coordination.

A file-backed task store and mailbox that lets an orchestrator and a pool of
worker sessions share work: tasks are created with dependencies, claimed
atomically by one worker, resolved with evidence, and idle workers announce
themselves through per-participant inboxes.
"""

__version__ = "0.1.0"

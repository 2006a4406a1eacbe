"""
Workflows for SpendFlow.

- obligations: per-user recurring obligation processor
- scheduler: in-process daily sweep over all users
"""

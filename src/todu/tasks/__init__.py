"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Priority) + persisted shape
- task_query.py: filter/sort criteria and statistics (pure functions)
- task_engine.py: owner of the ordered collection; CRUD, bulk ops, events
"""

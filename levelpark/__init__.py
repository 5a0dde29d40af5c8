"""
LevelPark - parking facility rule engine

Layers:
- domain: models, aggregates, fine policies and stateless domain services
- application: the entry/exit orchestrator, DTOs, commands and reports
- infrastructure: SQLAlchemy persistence and domain event messaging
"""

__version__ = "1.0.0"

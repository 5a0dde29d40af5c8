"""
Unit tests for LevelPark

Each module covers one layer: domain models and rules, application
services and DTOs, infrastructure adapters and the command line.
"""

"""Tests for LevelPark"""

"""Duel domain services: players, questions, practice and matches.

This package contains the domain logic imported by HTTP routes and socket
handlers, keeping transport concerns separated from core game mechanics.
"""

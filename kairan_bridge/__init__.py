"""
kairan-bridge — Discord/LINE broadcast bridge for a neighborhood association.

Messages posted by officers are fanned out to role-qualified LINE members,
with a night-time quiet window that holds non-urgent traffic until morning.
"""

__version__ = "3.0.0"

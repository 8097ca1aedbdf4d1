"""
Shared building blocks for progression services: exceptions, constants,
pure formulas, and the service/repository base classes.

Import the submodules directly; this package does not re-export them.
"""

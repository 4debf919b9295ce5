"""Exceptions raised while assembling, validating and building the stack."""

from typing import Iterable


class StackError(Exception):
    pass


class ConfigurationError(StackError, ValueError):
    """Missing or malformed synthesis inputs or project configuration."""


class GraphError(StackError):
    pass


class CycleError(GraphError):
    def __init__(self, members: Iterable[str]):
        self.members = sorted(members)
        super().__init__(f"Dependency cycle between: {', '.join(self.members)}")


class BuildError(StackError):
    """A descriptor could not be turned into a Pulumi resource or lookup."""

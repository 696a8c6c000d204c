"""Domain helpers shared by the core components."""

from .result import Result, Success, Failure, partition

__all__ = ["Result", "Success", "Failure", "partition"]

"""Abstract base classes for Gridlens components"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class Stage(ABC, Generic[InputT, OutputT]):
    """Abstract base class for grid analysis stages"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable stage name"""
        pass

    @property
    @abstractmethod
    def stage_number(self) -> int:
        """Stage number (1-4)"""
        pass

    @abstractmethod
    def execute(self, input_data: InputT) -> OutputT:
        """Execute the stage on an immutable snapshot"""
        pass

    @abstractmethod
    def validate_input(self, input_data: InputT) -> bool:
        """Validate input before processing"""
        pass

"""Abstract base class for model storage."""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel


ModelT = TypeVar("ModelT", bound=BaseModel)


class ModelRepository(ABC, Generic[ModelT]):
    """Abstract interface for loading and saving one persisted model.

    Scheduling and catalogue logic only talk to this interface, so the JSON
    file backend can be swapped for another store.
    """

    @abstractmethod
    def load(self) -> ModelT:
        """Load the model from storage.

        Returns:
            The stored model, or an empty default model when nothing is stored

        Raises:
            StorageError: If stored data exists but cannot be read or parsed

        """

    @abstractmethod
    def save(self, model: ModelT) -> None:
        """Persist the model.

        Args:
            model: Model to save

        Raises:
            StorageWriteError: If the write fails

        """

    @abstractmethod
    def exists(self) -> bool:
        """Check if anything is stored.

        Returns:
            True if stored data exists, False otherwise

        """

    @abstractmethod
    def get_location(self) -> str:
        """Get the storage location description.

        Returns:
            Human-readable description of where data is stored

        """

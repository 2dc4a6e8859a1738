"""
Storage of deployed stack records.
"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..errors import ConflictError
from ..MODELS.stack import Stack


class StackRepository(ABC):
    """
    Interface for the store of stack records, keyed by stack name.
    """
    @abstractmethod
    def get(self, name: str) -> Optional[Stack]:
        pass

    @abstractmethod
    def add(self, stack: Stack) -> None:
        """
        Inserts a stack whose name is not yet taken.

        :raises ConflictError: If a stack with the same name exists.
        """
        pass

    @abstractmethod
    def put(self, stack: Stack) -> None:
        pass

    @abstractmethod
    def delete(self, name: str) -> Optional[Stack]:
        pass

    @abstractmethod
    def list(self) -> List[Stack]:
        pass

    @abstractmethod
    def contains(self, name: str) -> bool:
        pass


class InMemoryStackRepository(StackRepository):
    """
    Process-local stack store. Contents are lost on restart.

    One coarse lock guards every access so the store can be shared between
    threads as well as coroutines.
    """
    def __init__(self):
        self._stacks: Dict[str, Stack] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> Optional[Stack]:
        with self._lock:
            return self._stacks.get(name)

    def add(self, stack: Stack) -> None:
        with self._lock:
            if stack.name in self._stacks:
                raise ConflictError(f"Stack {stack.name} already exists")
            self._stacks[stack.name] = stack

    def put(self, stack: Stack) -> None:
        with self._lock:
            self._stacks[stack.name] = stack

    def delete(self, name: str) -> Optional[Stack]:
        with self._lock:
            return self._stacks.pop(name, None)

    def list(self) -> List[Stack]:
        with self._lock:
            return list(self._stacks.values())

    def contains(self, name: str) -> bool:
        with self._lock:
            return name in self._stacks

    def __len__(self) -> int:
        with self._lock:
            return len(self._stacks)

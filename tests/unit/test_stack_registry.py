# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for the in-memory stack registry.
"""
import threading

import pytest

from swarmpilot.errors import ConflictError
from swarmpilot.MANAGERS.stack_registry import InMemoryStackRepository
from swarmpilot.MODELS.stack import Stack


class TestInMemoryStackRepository:
    """Tests for InMemoryStackRepository."""

    def test_add_get_delete(self):
        repo = InMemoryStackRepository()
        stack = Stack(name="s1")
        repo.add(stack)
        assert repo.get("s1") is stack
        assert repo.contains("s1")
        assert repo.delete("s1") is stack
        assert repo.get("s1") is None
        assert repo.delete("s1") is None

    def test_add_conflicts(self):
        repo = InMemoryStackRepository()
        repo.add(Stack(name="s1"))
        with pytest.raises(ConflictError):
            repo.add(Stack(name="s1"))

    def test_put_replaces(self):
        repo = InMemoryStackRepository()
        repo.add(Stack(name="s1"))
        replacement = Stack(name="s1", version="3.9")
        repo.put(replacement)
        assert repo.get("s1").version == "3.9"
        assert len(repo) == 1

    def test_concurrent_adds_have_one_winner(self):
        repo = InMemoryStackRepository()
        errors = []

        def add():
            try:
                repo.add(Stack(name="same"))
            except ConflictError as e:
                errors.append(e)

        threads = [threading.Thread(target=add) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(errors) == 19
        assert [s.name for s in repo.list()] == ["same"]

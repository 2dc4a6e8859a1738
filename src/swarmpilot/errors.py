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
Error taxonomy shared by every orchestration layer.

Engine failures are translated into these types inside the cluster client;
everything above it only ever sees an :class:`OrchestrationError`.
"""
from typing import Any, Type, TypeVar

import pydantic

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class OrchestrationError(Exception):
    """
    Base class for all errors surfaced by swarmpilot.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(OrchestrationError):
    """Malformed or missing input. Never reaches the engine."""


class NotFoundError(OrchestrationError):
    """A referenced stack, service, network, replica or task does not exist."""


class ConflictError(OrchestrationError):
    """Name collision on create, or a stale version token on update/scale."""


class EngineError(OrchestrationError):
    """The orchestration engine rejected or failed the call."""


def validate_input(model_cls: Type[ModelT], data: Any) -> ModelT:
    """
    Coerces caller input into a model, re-raising validation problems as
    :class:`ValidationError`.

    :param model_cls: The pydantic model to build.
    :param data: A model instance or a mapping of field values.
    :return: The validated model instance.
    """
    if isinstance(data, model_cls):
        return data
    if data is None:
        data = {}
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_summarize(model_cls.__name__, e.errors())) from e


def _summarize(model_name: str, errors) -> str:
    problems = []
    for err in errors:
        location = ".".join(str(part) for part in err.get("loc", ())) or model_name
        problems.append(f"{location}: {err.get('msg', 'invalid value')}")
    return f"Invalid {model_name}: " + "; ".join(problems)

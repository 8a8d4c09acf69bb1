"""Workflow and step registry."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Union

from ..errors import (
    DuplicateRegistrationError,
    RegistryFrozenError,
    StepNotRegisteredError,
    WorkflowNotRegisteredError,
)
from .models import StepDefinition, WorkflowDefinition

StepRef = Union[str, StepDefinition, Callable[..., Any]]
WorkflowRef = Union[str, WorkflowDefinition, Callable[..., Any]]


class WorkflowRegistry:
    """Name -> definition mapping for workflows and steps.

    Populated by explicit ``register_*`` calls while the application starts,
    then frozen; workers freeze the registry they are given before claiming
    any work, so lookups never race with registration.
    """

    def __init__(self) -> None:
        self._steps: Dict[str, StepDefinition] = {}
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._by_fn: Dict[Callable[..., Any], str] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    @property
    def steps(self) -> Mapping[str, StepDefinition]:
        return MappingProxyType(self._steps)

    @property
    def workflows(self) -> Mapping[str, WorkflowDefinition]:
        return MappingProxyType(self._workflows)

    def _check_writable(self, name: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register '{name}': registry is frozen"
            )
        if name in self._steps or name in self._workflows:
            raise DuplicateRegistrationError(f"'{name}' is already registered")

    def register_step(
        self,
        name: str,
        fn: Callable[..., Any],
        input_type: Any = Any,
        output_type: Any = Any,
    ) -> StepDefinition:
        """Register ``fn`` as the step ``name`` and return its definition."""
        self._check_writable(name)
        definition = StepDefinition(
            name=name, fn=fn, input_type=input_type, output_type=output_type
        )
        self._steps[name] = definition
        self._by_fn[fn] = name
        return definition

    def register_workflow(
        self,
        name: str,
        fn: Callable[..., Any],
        input_type: Any = Any,
        output_type: Any = Any,
    ) -> WorkflowDefinition:
        """Register ``fn`` as the workflow ``name`` and return its definition."""
        self._check_writable(name)
        definition = WorkflowDefinition(
            name=name, fn=fn, input_type=input_type, output_type=output_type
        )
        if not definition.is_async:
            raise TypeError(f"Workflow '{name}' must be an async function")
        self._workflows[name] = definition
        self._by_fn[fn] = name
        return definition

    def _resolve_name(self, ref: Any) -> str:
        if isinstance(ref, str):
            return ref
        return self._by_fn.get(ref, getattr(ref, "__name__", str(ref)))

    def get_step(self, ref: StepRef) -> StepDefinition:
        if isinstance(ref, StepDefinition):
            return ref
        name = self._resolve_name(ref)
        try:
            return self._steps[name]
        except KeyError:
            raise StepNotRegisteredError(name) from None

    def get_workflow(self, ref: WorkflowRef) -> WorkflowDefinition:
        if isinstance(ref, WorkflowDefinition):
            return ref
        name = self._resolve_name(ref)
        try:
            return self._workflows[name]
        except KeyError:
            raise WorkflowNotRegisteredError(name) from None


# Process-wide registry used when no explicit registry is passed around.
REGISTRY = WorkflowRegistry()


def register_step(
    name: str, fn: Callable[..., Any], input_type: Any = Any, output_type: Any = Any
) -> StepDefinition:
    """Add a step to ``REGISTRY``."""
    return REGISTRY.register_step(name, fn, input_type, output_type)


def register_workflow(
    name: str, fn: Callable[..., Any], input_type: Any = Any, output_type: Any = Any
) -> WorkflowDefinition:
    """Add a workflow to ``REGISTRY``."""
    return REGISTRY.register_workflow(name, fn, input_type, output_type)


__all__ = [
    "REGISTRY",
    "StepDefinition",
    "StepRef",
    "WorkflowDefinition",
    "WorkflowRef",
    "WorkflowRegistry",
    "register_step",
    "register_workflow",
]

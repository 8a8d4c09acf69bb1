"""Import application modules that register workflows and steps."""

from __future__ import annotations

import sys
from importlib import import_module
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from types import ModuleType
from typing import Iterable, List


def load_module(target: str) -> ModuleType:
    """Import ``target``, either a dotted module path or a ``.py`` file."""
    path = Path(target)
    if path.suffix == ".py":
        path = path.expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Module file not found: {path}")
        module_name = path.stem
        if module_name in sys.modules:
            return sys.modules[module_name]
        spec = spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {path}")
        module_obj = module_from_spec(spec)
        sys.modules[module_name] = module_obj
        try:
            spec.loader.exec_module(module_obj)
        except Exception:
            sys.modules.pop(module_name, None)
            raise
        return module_obj

    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    return import_module(target)


def load_modules(targets: Iterable[str]) -> List[ModuleType]:
    return [load_module(t) for t in targets]

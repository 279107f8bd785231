# scope.py
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from string import Template
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class Scope:
    """
    One lexical frame: the working directory and the environment overlay
    visible to steps inside it. Frames are immutable; nesting makes a new one.
    """
    cwd: Path
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    def __post_init__(self):
        # frozen: bypass the dataclass restriction to freeze the mapping too
        if not isinstance(self.env, MappingProxyType):
            object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def child(
        self,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "Scope":
        merged: Dict[str, str] = dict(self.env)
        merged.update(env or {})
        return replace(
            self,
            cwd=cwd if cwd is not None else self.cwd,
            env=MappingProxyType(merged),
        )


class ScopeStack:
    """
    Stack of Scope frames. `push()` is a context manager: the frame is popped
    on exit whether the nested steps succeed or raise.
    """

    def __init__(self, root: Scope):
        self._frames: List[Scope] = [root]

    @property
    def current(self) -> Scope:
        return self._frames[-1]

    @property
    def depth(self) -> int:
        return len(self._frames)

    @contextmanager
    def push(
        self,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> Iterator[Scope]:
        frame = self.current.child(cwd=cwd, env=env)
        self._frames.append(frame)
        try:
            yield frame
        finally:
            popped = self._frames.pop()
            assert popped is frame, "scope stack unbalanced"

    def process_env(self, base: Mapping[str, str]) -> Dict[str, str]:
        """The full environment for a step process: `base` plus every active overlay."""
        env = dict(base)
        env.update(self.current.env)
        return env


def expand(value: str, variables: Mapping[str, str], *, where: str = "") -> str:
    """Interpolate ${NAME} / $NAME references in a structured-action parameter."""
    try:
        return Template(value).substitute(variables)
    except KeyError as e:
        prefix = f"{where}: " if where else ""
        raise ConfigurationError(f"{prefix}undefined variable {e.args[0]!r} in {value!r}") from e
    except ValueError as e:
        prefix = f"{where}: " if where else ""
        raise ConfigurationError(f"{prefix}bad variable reference in {value!r}: {e}") from e

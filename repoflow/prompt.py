"""Interactive confirmation for mutating tasks.

`ConfirmationCascade` wraps a base prompter for one run. The first answer that reports
`apply_to_all` flips the cascade's `assume_yes` permanently; from then on `confirm()` answers
yes without consulting the base prompter again. The cascade is the only state shared between
concurrent repository workers, so every read and write of it happens under one lock (which
also serialises prompts on the terminal).

Without a base prompter (non-interactive runs) `confirm()` returns an empty result, which the
runtime treats as a decline: unattended runs fail safe.

`IOConfirmationPrompter` is the terminal implementation: `y`/`yes` confirms, `a`/`all`
confirms and applies to all, anything else (including EOF) declines.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol, TextIO


@dataclass(frozen=True)
class ConfirmationResult:
    confirmed: bool = False
    apply_to_all: bool = False


class ConfirmationPrompter(Protocol):
    def confirm(self, prompt: str) -> ConfirmationResult: ...


class IOConfirmationPrompter:
    def __init__(self, *, input: TextIO, output: TextIO | None = None) -> None:
        self.input = input
        self.output = output

    def confirm(self, prompt: str) -> ConfirmationResult:
        if self.output is not None:
            self.output.write(prompt)
            self.output.flush()
        response = self.input.readline().strip().lower()
        if response in {"y", "yes"}:
            return ConfirmationResult(confirmed=True)
        if response in {"a", "all"}:
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        return ConfirmationResult()


class ConfirmationCascade:
    def __init__(self, base: ConfirmationPrompter | None, *, assume_yes: bool = False) -> None:
        self._base = base
        self._assume_yes = assume_yes
        self._lock = threading.Lock()

    @property
    def assume_yes(self) -> bool:
        with self._lock:
            return self._assume_yes

    def confirm(self, prompt: str) -> ConfirmationResult:
        if self._base is None:
            return ConfirmationResult()
        with self._lock:
            if self._assume_yes:
                return ConfirmationResult(confirmed=True)
            result = self._base.confirm(prompt)
            if result.apply_to_all:
                self._assume_yes = True
            return result

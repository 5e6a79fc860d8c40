from __future__ import annotations

"""Buildpack-style console output.

CONTRACT
- Inputs: message strings
- Outputs:
  - `-----> ` prefixed step headers and seven-space indented detail lines
- Invariants:
  - Messages are printed verbatim (no rich markup/highlighting applied to them)
  - Multi-line messages are indented line by line so they nest under the step
- Failure:
  - None
"""

from dataclasses import dataclass, field

from rich.console import Console

TOPIC_PREFIX = "-----> "
INDENT = " " * 7
ERROR_PREFIX = " !     "


def indent(text: str, prefix: str = INDENT) -> str:
    return "\n".join(prefix + line if line else line for line in text.splitlines())


@dataclass
class BuildpackConsole:
    console: Console = field(default_factory=lambda: Console(highlight=False, soft_wrap=True))

    def _print(self, text: str, style: str | None = None) -> None:
        self.console.print(text, markup=False, highlight=False, style=style)

    def topic(self, message: str) -> None:
        self._print(TOPIC_PREFIX + message, style="bold")

    def info(self, message: str) -> None:
        self._print(indent(message))

    def error(self, message: str) -> None:
        self._print(indent(message, ERROR_PREFIX), style="red")

"""Error kinds raised while provisioning.

Every error here is fatal for a compile run: the orchestrator records it and
re-raises, the CLI prints it and exits non-zero.
"""

from __future__ import annotations


class KilnError(Exception):
    """Base class for provisioning failures."""


class RecipeError(KilnError):
    """Invalid recipe file, name, or dependency graph."""


class EnvDirError(KilnError):
    """A platform env dir variable could not be read."""


class FetchError(KilnError):
    def __init__(self, url: str, attempts: int, returncode: int, details: str = "") -> None:
        self.url = url
        self.attempts = attempts
        self.returncode = returncode
        self.details = details
        msg = f"Failed to fetch {url} (curl exit {returncode}, {attempts} attempt(s))"
        if details:
            msg += f"\n{details}"
        super().__init__(msg)


class ExtractError(KilnError):
    def __init__(self, archive: str, reason: str) -> None:
        self.archive = archive
        self.reason = reason
        super().__init__(f"Failed to extract {archive}: {reason}")


class BuildError(KilnError):
    def __init__(self, component: str, step: str, returncode: int, details: str = "") -> None:
        self.component = component
        self.step = step
        self.returncode = returncode
        self.details = details
        msg = f"{step} failed for {component} (exit {returncode})"
        if details:
            msg += f"\n{details}"
        super().__init__(msg)


class CacheIOError(KilnError):
    def __init__(self, name: str, action: str, reason: str) -> None:
        self.name = name
        self.action = action
        super().__init__(f"Cache {action} failed for {name}: {reason}")

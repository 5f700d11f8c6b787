"""
base.py

The selection-oracle port used by the drill-down navigator.

A SelectionOracle hands out one OracleSession per navigation. The session owns
the conversational transcript for that navigation only; leaving the `with`
block discards it. Concurrent navigations therefore never share a transcript.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Sequence

from category_mapper.exception import OracleContractError
from category_mapper.models import SelectionOption


def validate_options(options: Sequence[SelectionOption]) -> List[str]:
    """Returns the option names, refusing empty or duplicated option sets."""
    names = [o.name for o in options]
    if not names:
        raise OracleContractError("Cannot ask for a selection from an empty option set.")
    if len(set(names)) != len(names):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        raise OracleContractError(f"Option names must be distinct, got duplicates: {duplicates}")
    return names


def ensure_member(choice, names: Sequence[str]) -> str:
    """Single equality check against the offered names. No case folding, no fuzzy repair."""
    if not isinstance(choice, str) or choice not in names:
        raise OracleContractError(
            f"Oracle returned {choice!r}, which is not one of the offered options: {list(names)}"
        )
    return choice


class OracleSession(ABC):
    """Conversational context for a single navigation."""

    @abstractmethod
    def select(self, query: str, options: Sequence[SelectionOption], label: str) -> str:
        """
        Pick exactly one option name for `query`.

        Args:
            query: The text being mapped.
            options: Ordered, distinct options offered this turn.
            label: What the options represent, e.g. "child category".

        Returns:
            A name that is guaranteed to be one of `options`.

        Raises:
            OracleContractError: the answer could not be resolved to an offered name.
        """

    def close(self) -> None:
        """Release the transcript. Called on session exit."""


class SelectionOracle(ABC):
    """Factory for per-navigation sessions."""

    @abstractmethod
    def new_session(self) -> OracleSession:
        ...

    @contextmanager
    def session(self) -> Iterator[OracleSession]:
        session = self.new_session()
        try:
            yield session
        finally:
            session.close()

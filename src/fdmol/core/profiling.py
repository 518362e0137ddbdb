"""Profiling of the execution time of the discretization stages."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class StageProfile:
    """
    Saves the execution times of a profiled function.

    Serves as a node in the tree of nested profiled calls.
    """

    def __init__(self, name: str) -> None:
        """
        Initialize the StageProfile.

        Parameters
        ----------
        name
            The qualified name of the function.
        """
        #: name of the function
        self.name = name
        #: accumulated execution time
        self.execution_time = 0.0
        #: the total number of calls
        self.ncalls = 0
        #: profiles of the nested calls
        self.nested_profiles: dict[str, StageProfile] = {}

    def flattened_data(self) -> dict[str, StageProfile]:
        """
        Drop the nesting and merge the execution times of equally named functions.

        Returns
        -------
        dict
            Mapping of function names to merged profiles.
        """
        data: dict[str, StageProfile] = {}
        if self.execution_time > 0:
            data[self.name] = self
        for nested in self.nested_profiles.values():
            for name, p in nested.flattened_data().items():
                if name not in data:
                    data[name] = StageProfile(name)
                data[name].execution_time += p.execution_time
                data[name].ncalls += p.ncalls
        return data

    def report_lines(self, total_time: float, depth: int = 0, nested: bool = True) -> list[str]:
        """
        Format the stats of this profile and its nested calls.

        Parameters
        ----------
        total_time
            The reference time for the relative execution times.
        depth
            Nesting depth, used for indentation.
        nested
            Whether to show the tree of nested calls or a flattened list.

        Returns
        -------
        list of str
            One line per profiled function.
        """
        lines = []
        if self.execution_time > 0:
            indent = "  " * depth if nested else ""
            rel = self.execution_time / total_time if total_time > 0 else 0.0
            lines.append(f"{indent + self.name:<60} {self.execution_time:10.4f}s {rel:9.2%} {self.ncalls:8d}")
            if nested:
                depth += 1
                total_time = self.execution_time
        if nested or self.name == "":
            profiles = list(self.nested_profiles.values()) if nested else list(self.flattened_data().values())
            for p in sorted(profiles, key=lambda item: item.execution_time, reverse=True):
                lines += p.report_lines(total_time, depth, nested)
        return lines


class Profiler:
    """Static class for accessing/controlling the profiling of the code."""

    _start_time: float | None = None
    _root_profile = StageProfile("")
    _current_profile = _root_profile

    @staticmethod
    def start() -> None:
        """(Re)start the Profiler, dropping previous measurements."""
        Profiler._root_profile = StageProfile("")
        Profiler._current_profile = Profiler._root_profile
        Profiler._start_time = time.perf_counter()

    @staticmethod
    def stop() -> None:
        """Stop profiling."""
        Profiler._start_time = None

    @staticmethod
    def is_active() -> bool:
        """Check if the Profiler is running."""
        return Profiler._start_time is not None

    @staticmethod
    def profiles() -> dict[str, StageProfile]:
        """The flattened profiles of all measured functions."""
        return Profiler._root_profile.flattened_data()

    @staticmethod
    def summary(nested: bool = True) -> str:
        """
        Summarize the execution times of the profiled functions.

        Parameters
        ----------
        nested
            Whether to show a nested tree view or a flattened list.

        Returns
        -------
        str
            The formatted summary table.
        """
        if not Profiler.is_active():
            return "Profiler is not active, call Profiler.start() first."
        assert Profiler._start_time is not None
        total_time = time.perf_counter() - Profiler._start_time
        header = f"{'stage':<60} {'total':>11} {'relative':>9} {'#calls':>8}"
        lines = [header, "-" * len(header)]
        lines += Profiler._root_profile.report_lines(total_time, nested=nested)
        return "\n".join(lines)

    @staticmethod
    def log_summary(nested: bool = True) -> None:
        """Write the summary to the log."""
        logger.info("Profiler results:\n%s", Profiler.summary(nested))


def profile(method: F) -> F:
    """
    Decorate a function to measure its execution time while the Profiler is active.

    Parameters
    ----------
    method
        The function to profile.

    Returns
    -------
    Callable
        The wrapped function.
    """

    @wraps(method)
    def do_profile(*args: Any, **kw: Any) -> Any:
        if not Profiler.is_active():
            return method(*args, **kw)
        name = method.__qualname__
        parent_profile = Profiler._current_profile
        current_profile = parent_profile.nested_profiles.setdefault(name, StageProfile(name))
        Profiler._current_profile = current_profile
        ts = time.perf_counter()
        try:
            return method(*args, **kw)
        finally:
            current_profile.execution_time += time.perf_counter() - ts
            current_profile.ncalls += 1
            Profiler._current_profile = parent_profile

    return cast(F, do_profile)

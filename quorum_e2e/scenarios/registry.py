"""
Scenario Registry

Central registry of scenario functions so the CLI and the pytest suites
discover scenarios by name instead of importing each one.

Usage:
    from .registry import register_scenario

    @register_scenario("split_brain_avoidance", suite="discovery")
    async def split_brain_avoidance(ctx):
        ...
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

LOG = logging.getLogger(__name__)

ScenarioFunc = Callable[..., Awaitable[None]]


class ScenarioRegistry:
    """
    Registry of scenario functions.

    Provides registration, lookup, and grouping into suites.
    """

    def __init__(self):
        self._scenarios: Dict[str, ScenarioFunc] = {}
        self._suites: Dict[str, Set[str]] = {}

    def register(self, name: str, func: ScenarioFunc, suite: Optional[str] = None) -> None:
        """
        Register a scenario function.

        Args:
            name: Unique scenario name (e.g., "block_enforcement")
            func: The async scenario function, called with a ScenarioContext
            suite: Optional suite name for grouping scenarios
        """
        if name in self._scenarios:
            LOG.warning(f"Scenario '{name}' already registered, overwriting")

        self._scenarios[name] = func

        if suite:
            self._suites.setdefault(suite, set()).add(name)

        LOG.debug(f"Registered scenario: {name}" + (f" (suite: {suite})" if suite else ""))

    def get(self, name: str) -> Optional[ScenarioFunc]:
        return self._scenarios.get(name)

    def get_suite_scenarios(self, suite_name: str) -> List[str]:
        return sorted(self._suites.get(suite_name, set()))

    def list_all(self) -> List[str]:
        return list(self._scenarios.keys())

    def list_suites(self) -> List[str]:
        return list(self._suites.keys())

    def get_available_choices(self) -> List[str]:
        """All values accepted by --scenario"""
        choices = ["all"]
        choices.extend(sorted(self._suites.keys()))
        choices.extend(sorted(self._scenarios.keys()))
        return list(dict.fromkeys(choices))

    def resolve(self, selection: str) -> List[str]:
        """
        Scenario names selected by a --scenario value.

        Args:
            selection: "all", a suite name or a scenario name

        Returns:
            Scenario names in registration order; empty if nothing matches
        """
        if selection == "all":
            return self.list_all()

        suite = self.get_suite_scenarios(selection)
        if suite:
            return [name for name in self.list_all() if name in suite]

        if selection in self._scenarios:
            return [selection]

        return []


# Global registry instance
_registry = ScenarioRegistry()


def register_scenario(name: str, suite: Optional[str] = None) -> Callable:
    """
    Decorator to register a scenario function.

    Args:
        name: Unique scenario name
        suite: Optional suite name for grouping
    """
    def decorator(func: ScenarioFunc) -> ScenarioFunc:
        _registry.register(name, func, suite)
        return func
    return decorator


def get_scenario(name: str) -> Optional[ScenarioFunc]:
    return _registry.get(name)


def list_scenarios() -> List[str]:
    return _registry.list_all()


def list_suites() -> List[str]:
    return _registry.list_suites()


def get_available_choices() -> List[str]:
    return _registry.get_available_choices()


def get_scenarios_to_run(selection: str) -> List[str]:
    return _registry.resolve(selection)

"""
Scenario package initialization.

Importing this package registers every scenario with the scenario
registry for discovery through the CLI and the orchestrator.
"""

from .block_enforcement import block_enforcement
from .context import ScenarioContext
from .master_link import master_link_partition
from .orchestrator import ScenarioOrchestrator
from .registry import (
    get_available_choices,
    get_scenario,
    get_scenarios_to_run,
    list_scenarios,
    list_suites,
    register_scenario,
)
from .rejoin import rejoin_consistency
from .split_brain import split_brain_avoidance
from .write_durability import write_durability

__all__ = [
    'ScenarioContext',
    'ScenarioOrchestrator',
    'register_scenario',
    'get_scenario',
    'get_scenarios_to_run',
    'get_available_choices',
    'list_scenarios',
    'list_suites',
    'split_brain_avoidance',
    'block_enforcement',
    'master_link_partition',
    'write_durability',
    'rejoin_consistency',
]

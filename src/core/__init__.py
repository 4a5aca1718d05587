"""
Core infrastructure module.
- Configuration management
- Exceptions
- Linear algebra helpers
- State machine
"""

from .config import (
    SimulationConfig, LaserConfig, ExtractorConfig, EKFSLAMConfig,
    GridConfig, PlannerConfig, FollowerConfig, load_config, config_from_dict
)
from .errors import SLAMError, StateConsistencyError, ConfigError
from .state_machine import StateMachine, StateTransition

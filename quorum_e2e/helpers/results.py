import time
from typing import Any, Dict, List, Optional

from ..utils.common import format_timestamp


class ScenarioResult:
    """Scenario results"""
    def __init__(self, scenario_name: str):
        self.scenario_name = scenario_name
        self.success = False
        self.error: Optional[str] = None
        self.error_type: Optional[str] = None
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.details: Dict[str, Any] = {}
        self.steps: List[str] = []

    def start(self):
        self.start_time = time.time()
        self.end_time = self.start_time

    def finish(self):
        self.end_time = time.time()
        self.set_duration(self.end_time - self.start_time)

    def add_step(self, description: str):
        """Record a checkpoint the scenario reached"""
        self.steps.append(description)

    def mark_success(self, **details):
        """Mark scenario as successful"""
        self.success = True
        if details:
            self.details.update(details)

    def mark_failure(self, error: BaseException, **details):
        """Mark scenario as failed"""
        self.success = False
        self.error = str(error)
        self.error_type = type(error).__name__
        if hasattr(error, "to_dict"):
            self.details["error_details"] = error.to_dict()
        if details:
            self.details.update(details)

    def set_duration(self, duration: float):
        """Set scenario duration"""
        self.details["duration"] = round(duration, 3)

    def to_dict(self):
        """Convert to dictionary for JSON serialization"""
        return {
            "scenario_name": self.scenario_name,
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
            "start_time": format_timestamp(self.start_time) if self.start_time else None,
            "end_time": format_timestamp(self.end_time) if self.end_time else None,
            "steps": self.steps,
            "details": self.details,
        }

"""
Synthetic Action Log Generator.

Generates user/agent action events with known, recoverable patterns:
- Scheduled routines (weekly, weekdays) with fixed step sequences
- Families of similarly phrased free-text requests
- Unstructured noise sessions

Output is deterministic for a given seed.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from faker import Faker

from ..ingest.event_store import save_events
from ..models import ActionEvent
from .config import ActionLogConfig

logger = logging.getLogger(__name__)


class ActionLogGenerator:
    """
    Synthetic action log generator.
    """

    def __init__(self, config: Optional[ActionLogConfig] = None):
        self.config = config or ActionLogConfig()

        # Initialize random generators with seed for reproducibility
        self.rng = np.random.default_rng(self.config.seed)
        self.faker = Faker()
        self.faker.seed_instance(self.config.seed)

        self.start_date = self._resolve_start_date(self.config.start_date)
        self.users: List[str] = []

        self.event_counter = 0
        self.session_counter = 0
        self.events: List[ActionEvent] = []

        self.stats = {
            "routine_sessions": 0,
            "request_sessions": 0,
            "noise_sessions": 0,
        }

    def _resolve_start_date(self, start_date: Optional[str]) -> datetime:
        if start_date:
            parsed = datetime.strptime(start_date, "%Y-%m-%d")
            return parsed.replace(tzinfo=timezone.utc)
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        monday = today - timedelta(days=today.weekday())
        return monday - timedelta(weeks=self.config.weeks)

    def _next_event_id(self) -> str:
        self.event_counter += 1
        return f"evt-{self.event_counter:06d}"

    def _next_session_id(self) -> str:
        self.session_counter += 1
        return f"sess-{self.session_counter:05d}"

    def generate_users(self) -> List[str]:
        self.users = sorted({
            self.faker.unique.user_name() for _ in range(self.config.num_users)
        })
        return self.users

    def _emit_session(
        self,
        user_id: str,
        started: datetime,
        steps: List[Tuple[str, Dict[str, Any]]],
        request_text: Optional[str] = None,
    ) -> List[ActionEvent]:
        session_id = self._next_session_id()
        timestamp = started
        session = []
        for position, (action_type, fields) in enumerate(steps):
            duration = float(self.rng.integers(20, 240))
            session.append(ActionEvent(
                id=self._next_event_id(),
                organization_id=self.config.organization_id,
                user_id=user_id,
                session_id=session_id,
                action_type=action_type,
                timestamp=timestamp,
                agent_id=fields.get("agent_id"),
                workflow_id=fields.get("workflow_id"),
                tool_name=fields.get("tool_name"),
                original_request=request_text if position == 0 else None,
                success=bool(self.rng.random() > 0.03),
                duration_seconds=duration,
                sequence_position=position,
            ))
            timestamp += timedelta(seconds=duration + float(self.rng.integers(10, 120)))
        self.events.extend(session)
        return session

    # =========================================================================
    # PATTERN GENERATION
    # =========================================================================

    def generate_routines(self) -> None:
        """Emit one session per scheduled routine occurrence."""
        days = self.config.weeks * 7
        for routine in self.config.routines:
            owners = list(self.rng.choice(
                self.users, size=min(routine["num_users"], len(self.users)), replace=False
            ))
            for offset in range(days):
                day = self.start_date + timedelta(days=offset)
                if routine["schedule"] == "weekly" and day.weekday() != routine["weekday"]:
                    continue
                if routine["schedule"] == "weekdays" and day.weekday() >= 5:
                    continue
                if self.rng.random() < self.config.skip_probability:
                    continue
                started = day.replace(hour=routine["hour"], minute=routine["minute"])
                started += timedelta(minutes=int(self.rng.integers(0, 10)))
                self._emit_session(str(self.rng.choice(owners)), started, routine["steps"])
                self.stats["routine_sessions"] += 1

    def generate_requests(self) -> None:
        """Emit request sessions whose first action carries free text."""
        for family in self.config.request_families.values():
            for _ in range(self.config.requests_per_week * self.config.weeks):
                template = str(self.rng.choice(family["templates"]))
                text = template.format(city=self.faker.city(), name=self.faker.first_name())
                self._emit_session(
                    str(self.rng.choice(self.users)),
                    self._random_work_time(),
                    family["steps"],
                    request_text=text,
                )
                self.stats["request_sessions"] += 1

    def generate_noise(self) -> None:
        """Emit short sessions of randomly chosen actions."""
        actions = self.config.noise_actions
        for _ in range(self.config.noise_sessions_per_week * self.config.weeks):
            length = int(self.rng.integers(2, 5))
            indices = self.rng.choice(len(actions), size=length, replace=True)
            self._emit_session(
                str(self.rng.choice(self.users)),
                self._random_work_time(),
                [actions[i] for i in indices],
            )
            self.stats["noise_sessions"] += 1

    def _random_work_time(self) -> datetime:
        day = self.start_date + timedelta(days=int(self.rng.integers(0, self.config.weeks * 7)))
        return day.replace(
            hour=int(self.rng.integers(10, 18)), minute=int(self.rng.integers(0, 60))
        )

    def generate_all(self) -> List[ActionEvent]:
        """Generate users, routines, requests and noise."""
        logger.info(
            f"Generating {self.config.weeks} weeks of actions for "
            f"{self.config.organization_id} (seed={self.config.seed})"
        )
        self.generate_users()
        self.generate_routines()
        self.generate_requests()
        self.generate_noise()
        self.events.sort(key=lambda e: (e.timestamp, e.id))
        logger.info(f"Generated {len(self.events)} events: {self.stats}")
        return self.events

    def save_output(self, output_path: Path) -> Path:
        return save_events(self.events, Path(output_path))


def generate_action_log(
    output_path: Path,
    seed: int = 42,
    weeks: int = 6,
    organization_id: str = "org-demo",
) -> Path:
    """
    Convenience function to generate and save an action log.

    Returns:
        Path of the written JSON file
    """
    generator = ActionLogGenerator(ActionLogConfig(
        seed=seed, weeks=weeks, organization_id=organization_id
    ))
    generator.generate_all()
    return generator.save_output(output_path)

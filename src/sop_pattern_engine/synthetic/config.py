"""
Configuration settings for the synthetic action log generator.

This module contains the routines, request families and noise actions
used to generate realistic user/agent activity with known patterns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ActionLogConfig:
    """Main configuration for the synthetic action log generator."""

    # Random seed for reproducibility
    seed: int = 42

    organization_id: str = "org-demo"
    num_users: int = 12

    # Generated period; start_date defaults to the Monday `weeks` weeks ago
    weeks: int = 6
    start_date: Optional[str] = None

    # Unstructured sessions per week
    noise_sessions_per_week: int = 15

    # Requests per week for each request family
    requests_per_week: int = 2

    # Probability that a scheduled routine is skipped on a given day
    skip_probability: float = 0.05

    # Scheduled routines: fixed steps at a fixed slot
    routines: List[Dict[str, Any]] = field(default_factory=lambda: [
        {
            "name": "weekly_brand_review",
            "schedule": "weekly",
            "weekday": 0,  # Monday
            "hour": 9,
            "minute": 0,
            "num_users": 3,
            "steps": [
                ("agent_call", {"agent_id": "brand-agent"}),
                ("tool_use", {"tool_name": "notion"}),
                ("approval", {}),
                ("agent_call", {"agent_id": "finance-agent"}),
            ],
        },
        {
            "name": "daily_ops_digest",
            "schedule": "weekdays",
            "hour": 8,
            "minute": 30,
            "num_users": 2,
            "steps": [
                ("tool_use", {"tool_name": "slack"}),
                ("agent_call", {"agent_id": "ops-agent"}),
                ("workflow_run", {"workflow_id": "daily-digest"}),
            ],
        },
    ])

    # Free-text request families; each becomes a request cluster
    request_families: Dict[str, Dict[str, Any]] = field(default_factory=lambda: {
        "expense_report": {
            "steps": [
                ("agent_call", {"agent_id": "finance-agent"}),
                ("tool_use", {"tool_name": "expensify"}),
            ],
            "templates": [
                "Please submit my expense report for the {city} trip",
                "Can you file the expense report from my {city} travel",
                "Submit expense report for travel to {city}",
                "I need my {city} trip expense report submitted",
            ],
        },
        "access_request": {
            "steps": [
                ("agent_call", {"agent_id": "it-support-agent"}),
                ("approval", {}),
                ("tool_use", {"tool_name": "okta"}),
            ],
            "templates": [
                "Grant {name} access to the analytics dashboard",
                "Please give {name} dashboard access for analytics",
                "Need analytics dashboard access set up for {name}",
                "Set up access to the analytics dashboard for {name}",
            ],
        },
    })

    # Actions drawn at random for unstructured sessions
    noise_actions: List[Any] = field(default_factory=lambda: [
        ("tool_use", {"tool_name": "gmail"}),
        ("tool_use", {"tool_name": "calendar"}),
        ("tool_use", {"tool_name": "drive"}),
        ("tool_use", {"tool_name": "jira"}),
        ("agent_call", {"agent_id": "research-agent"}),
        ("agent_call", {"agent_id": "writing-agent"}),
        ("workflow_run", {"workflow_id": "weekly-report"}),
    ])

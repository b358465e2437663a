"""
Agent prompt definitions
"""

from .cbt_agent import (
    OPENING_REPLY,
    TherapistConfig,
    generate_therapist_prompt,
    get_therapist_config,
)

__all__ = [
    "OPENING_REPLY",
    "TherapistConfig",
    "generate_therapist_prompt",
    "get_therapist_config",
]

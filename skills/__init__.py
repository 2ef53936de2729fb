"""Skills module for skillfactory.

Skills are directories holding a SKILL.md file (plus optional resources)
that AI agents read as instructions. Base skills ship in skills/library/;
extensions can add more or replace base skills by id.
"""

from skills.agents import AGENT_PROFILES, AgentProfile, SkillLayout, get_agent_profile
from skills.catalog import BaseSkillCatalog
from skills.installer import SkillInstaller

__all__ = [
    "AGENT_PROFILES",
    "AgentProfile",
    "BaseSkillCatalog",
    "SkillInstaller",
    "SkillLayout",
    "get_agent_profile",
]

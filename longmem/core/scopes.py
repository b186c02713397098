"""
Scope access control for agents.

Hosts ask this manager which scopes an agent may read or write and hand the
result to the store and retriever as a plain filter list.
"""

from typing import Dict, List, Optional

from ..config import ScopeConfig
from ..logging import get_logger
from .models import DEFAULT_SCOPE, is_valid_scope


class ScopeManager:
    """Resolves accessible scopes per agent from configuration"""

    def __init__(self, config: Optional[ScopeConfig] = None):
        self.config = config or ScopeConfig()
        self.logger = get_logger(__name__)

        for agent_id, scopes in self.config.agent_access.items():
            invalid = [scope for scope in scopes if not is_valid_scope(scope)]
            if invalid:
                raise ValueError(f"Agent {agent_id} has malformed scopes: {', '.join(invalid)}")

    @staticmethod
    def agent_scope(agent_id: str) -> str:
        """Private namespace of an agent"""
        return f"agent:{agent_id}"

    def get_accessible_scopes(self, agent_id: Optional[str] = None) -> List[str]:
        """
        Scopes an agent may read and write.

        Every agent reaches the global scope and its own agent scope, plus
        any scopes granted in its configured access list.
        """
        if not agent_id:
            return [DEFAULT_SCOPE]

        scopes = [DEFAULT_SCOPE, self.agent_scope(agent_id)]
        for scope in self.config.agent_access.get(agent_id, []):
            if scope not in scopes:
                scopes.append(scope)
        return scopes

    def is_accessible(self, scope: str, agent_id: Optional[str] = None) -> bool:
        """Check whether an agent may touch a scope"""
        return scope in self.get_accessible_scopes(agent_id)

    def get_default_scope(self, agent_id: Optional[str] = None) -> str:
        """Scope new memories land in when the caller names none"""
        if agent_id:
            return self.agent_scope(agent_id)
        return self.config.default_scope

    def describe(self) -> Dict[str, str]:
        """Known scope definitions, for operator tooling"""
        return dict(self.config.definitions)

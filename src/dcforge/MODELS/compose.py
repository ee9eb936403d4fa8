"""
Model for a Docker Compose document referenced by a devcontainer.
"""
from typing import List, Dict, Any
from pydantic import BaseModel


class ComposeFile(BaseModel):
    """
    The parts of a compose file the devcontainer layer cares about.
    """
    services: List[str] = []
    volumes: List[str] = []
    raw: Dict[str, Any] = {}

    def has_service(self, name: str) -> bool:
        return name in self.services

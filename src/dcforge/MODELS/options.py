"""
Options accepted by the initialization pipeline.
"""
from typing import List, Dict, Optional, Any, Union
from pydantic import BaseModel

from .configuration import Configuration


class DevcontainerOptions(BaseModel):
    """
    Everything the caller chooses for one devcontainer initialization.
    Either template (a catalog id) or template_package (a discovered package id) picks the base.
    """
    name: str
    output_path: str = "."
    description: str = ""

    template: Optional[str] = None
    template_package: Optional[str] = None
    template_version: Optional[str] = None
    sources: List[str] = []

    features: List[str] = []
    feature_options: Dict[str, Dict[str, Any]] = {}
    extensions: List[str] = []
    include_recommended_extensions: bool = True
    ports: List[Union[int, str]] = []
    post_create_command: Optional[str] = None
    env: Dict[str, str] = {}
    container_env: Dict[str, str] = {}
    workspace_folder: Optional[str] = None
    base_image: Optional[str] = None

    use_docker_compose: bool = False
    force: bool = False
    custom_settings: Optional[Configuration] = None

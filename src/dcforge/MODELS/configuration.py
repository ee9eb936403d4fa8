"""
The devcontainer configuration produced by a merge, and its JSON mapping.
"""
import copy
from typing import List, Dict, Optional, Any, Union
from pydantic import BaseModel


class BuildConfig(BaseModel):
    """
    Dockerfile build settings. Mutually exclusive with an image reference.
    """
    dockerfile: Optional[str] = None
    context: Optional[str] = None
    args: Dict[str, str] = {}
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.dockerfile:
            data["dockerfile"] = self.dockerfile
        if self.context:
            data["context"] = self.context
        if self.args:
            data["args"] = dict(self.args)
        if self.target:
            data["target"] = self.target
        return data


class Configuration(BaseModel):
    """
    A complete devcontainer configuration.

    Exactly one of image, build or docker_compose_file is expected to be set;
    the validator enforces it. Features are keyed by qualified feature id.
    """
    name: str = ""
    image: Optional[str] = None
    build: Optional[BuildConfig] = None
    docker_compose_file: Optional[Union[str, List[str]]] = None
    service: Optional[str] = None
    run_services: List[str] = []

    features: Dict[str, Dict[str, Any]] = {}
    extensions: List[str] = []
    customizations: Dict[str, Any] = {}

    forward_ports: List[Union[int, str]] = []
    post_create_command: Optional[str] = None
    remote_env: Dict[str, str] = {}
    container_env: Dict[str, str] = {}
    mounts: List[Union[str, Dict[str, Any]]] = []
    run_args: List[str] = []
    workspace_folder: Optional[str] = None

    def to_devcontainer_dict(self) -> Dict[str, Any]:
        """
        Render the public devcontainer.json shape. Empty fields are omitted.
        """
        data: Dict[str, Any] = {"name": self.name}

        if self.image:
            data["image"] = self.image
        if self.build is not None:
            data["build"] = self.build.to_dict()
        if self.docker_compose_file:
            data["dockerComposeFile"] = copy.deepcopy(self.docker_compose_file)
        if self.service:
            data["service"] = self.service
        if self.run_services:
            data["runServices"] = list(self.run_services)

        data["features"] = copy.deepcopy(self.features)

        customizations = copy.deepcopy(self.customizations)
        if self.extensions:
            vscode = customizations.setdefault("vscode", {})
            vscode["extensions"] = list(self.extensions)
        if customizations:
            data["customizations"] = customizations

        if self.forward_ports:
            data["forwardPorts"] = list(self.forward_ports)
        if self.post_create_command:
            data["postCreateCommand"] = self.post_create_command
        if self.remote_env:
            data["remoteEnv"] = dict(self.remote_env)
        if self.container_env:
            data["containerEnv"] = dict(self.container_env)
        if self.mounts:
            data["mounts"] = copy.deepcopy(self.mounts)
        if self.run_args:
            data["runArgs"] = list(self.run_args)
        if self.workspace_folder:
            data["workspaceFolder"] = self.workspace_folder
        return data

    @classmethod
    def from_devcontainer_dict(cls, data: Dict[str, Any]) -> "Configuration":
        """
        Build a Configuration from a parsed devcontainer.json document.

        :param data: The decoded JSON object.
        :return: The configuration; editor extensions are lifted out of customizations.
        """
        if not isinstance(data, dict):
            raise TypeError("devcontainer document must be a JSON object")

        customizations = copy.deepcopy(data.get("customizations") or {})
        extensions: List[str] = []
        vscode = customizations.get("vscode")
        if isinstance(vscode, dict) and "extensions" in vscode:
            extensions = list(vscode.pop("extensions") or [])
            if not vscode:
                del customizations["vscode"]

        build = data.get("build")
        features = data.get("features") or {}
        post_create = data.get("postCreateCommand")
        if isinstance(post_create, list):
            post_create = " ".join(str(part) for part in post_create)

        return cls(
            name=data.get("name") or "",
            image=data.get("image"),
            build=BuildConfig(**build) if isinstance(build, dict) else None,
            docker_compose_file=data.get("dockerComposeFile"),
            service=data.get("service"),
            run_services=data.get("runServices") or [],
            features={
                key: dict(value) if isinstance(value, dict) else {}
                for key, value in features.items()
            },
            extensions=extensions,
            customizations=customizations,
            forward_ports=data.get("forwardPorts") or [],
            post_create_command=post_create,
            remote_env=data.get("remoteEnv") or {},
            container_env=data.get("containerEnv") or {},
            mounts=data.get("mounts") or [],
            run_args=data.get("runArgs") or [],
            workspace_folder=data.get("workspaceFolder"),
        )

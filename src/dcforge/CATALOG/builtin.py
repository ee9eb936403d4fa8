# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Built-in features, templates and editor extensions.
"""

from typing import List

from ..MODELS.feature import Feature, FeatureOption
from ..MODELS.template import Template
from .catalog import Extension, SourceCatalog

FEATURE_REGISTRY = "ghcr.io/devcontainers/features"


def _string(description, default, enum=None):
    return FeatureOption(type="string", description=description, default=default, enum=enum or [])


def _flag(description, default):
    return FeatureOption(type="boolean", description=description, default=default)


def builtin_features() -> List[Feature]:
    return [
        Feature(
            id="dotnet",
            name=".NET",
            description="Installs .NET SDK and runtime",
            version="2",
            repository=f"{FEATURE_REGISTRY}/dotnet",
            category="runtime",
            tags=["dotnet", "csharp", "runtime"],
            default_options={"version": "8.0"},
            options={
                "version": _string(".NET version to install", "8.0", ["6.0", "7.0", "8.0", "latest"]),
                "installUsingApt": _flag("Install using apt-get instead of tar.gz", True),
                "dotnetRuntimeOnly": _flag("Install runtime only (not SDK)", False),
            },
            documentation="https://github.com/devcontainers/features/tree/main/src/dotnet",
        ),
        Feature(
            id="node",
            name="Node.js",
            description="Installs Node.js, nvm and yarn",
            version="1",
            repository=f"{FEATURE_REGISTRY}/node",
            category="runtime",
            tags=["node", "javascript", "typescript"],
            default_options={"version": "lts"},
            options={
                "version": _string("Node.js version", "lts", ["lts", "18", "19", "20", "latest"]),
                "nodeGypDependencies": _flag("Install dependencies needed to compile native modules", True),
                "nvmInstallPath": _string("Path to install nvm", "/usr/local/share/nvm"),
            },
        ),
        Feature(
            id="python",
            name="Python",
            description="Installs Python and pip",
            version="1",
            repository=f"{FEATURE_REGISTRY}/python",
            category="runtime",
            tags=["python", "pip"],
            default_options={"version": "3.12"},
            options={
                "version": _string("Python version", "3.12", ["3.10", "3.11", "3.12", "latest"]),
                "installTools": _flag("Install common Python tools", True),
            },
        ),
        Feature(
            id="git",
            name="Git",
            description="Installs an up-to-date version of Git",
            version="1",
            repository=f"{FEATURE_REGISTRY}/git",
            category="tool",
            tags=["git", "vcs"],
            options={
                "version": _string("Git version", "latest"),
                "ppa": _flag("Install from the git-core PPA", True),
            },
        ),
        Feature(
            id="github-cli",
            name="GitHub CLI",
            description="Installs the GitHub CLI",
            version="1",
            repository=f"{FEATURE_REGISTRY}/github-cli",
            category="tool",
            tags=["github", "gh", "git"],
            options={"version": _string("GitHub CLI version", "latest")},
            dependencies=["git"],
        ),
        Feature(
            id="docker-in-docker",
            name="Docker in Docker",
            description="Enables Docker inside the container",
            version="2",
            repository=f"{FEATURE_REGISTRY}/docker-in-docker",
            category="tool",
            tags=["docker", "containers"],
            options={
                "version": _string("Docker version", "latest"),
                "moby": _flag("Install Moby CLI instead of Docker CLI", True),
                "dockerDashComposeVersion": _string("Docker Compose version", "v2"),
            },
            conflicts_with=["docker-outside-of-docker"],
        ),
        Feature(
            id="docker-outside-of-docker",
            name="Docker outside of Docker",
            description="Reuses the host Docker daemon from inside the container",
            version="1",
            repository=f"{FEATURE_REGISTRY}/docker-outside-of-docker",
            category="tool",
            tags=["docker", "containers"],
            options={
                "version": _string("Docker CLI version", "latest"),
                "moby": _flag("Install Moby CLI instead of Docker CLI", True),
            },
            conflicts_with=["docker-in-docker"],
        ),
        Feature(
            id="azure-cli",
            name="Azure CLI",
            description="Installs Azure CLI",
            version="1",
            repository=f"{FEATURE_REGISTRY}/azure-cli",
            category="cloud",
            tags=["azure", "cloud"],
            options={
                "version": _string("Azure CLI version", "latest"),
                "installBicep": _flag("Install Azure Bicep CLI", True),
            },
        ),
        Feature(
            id="kubectl-helm-minikube",
            name="Kubernetes Tools",
            description="Installs kubectl, Helm, and Minikube",
            version="1",
            repository=f"{FEATURE_REGISTRY}/kubectl-helm-minikube",
            category="kubernetes",
            tags=["kubernetes", "k8s", "helm"],
            options={
                "version": _string("kubectl version", "latest"),
                "helm": _string("Helm version", "latest"),
                "minikube": _string("Minikube version", "latest"),
            },
        ),
    ]


_DOTNET_EXTENSIONS = ["ms-dotnettools.csharp", "ms-dotnettools.vscode-dotnet-runtime"]
_DOTNET_ENV = {"DOTNET_CLI_TELEMETRY_OPTOUT": "1", "ASPNETCORE_ENVIRONMENT": "Development"}


def builtin_templates() -> List[Template]:
    return [
        Template(
            id="dotnet-basic",
            name=".NET Basic",
            description="Basic .NET development environment",
            category="runtime",
            base_image="mcr.microsoft.com/dotnet/sdk:8.0",
            required_features=["dotnet"],
            optional_features=["docker-in-docker", "azure-cli", "git"],
            default_extensions=_DOTNET_EXTENSIONS,
            default_ports=[5000, 5001],
            default_post_create_command="dotnet restore",
            default_env_vars=_DOTNET_ENV,
        ),
        Template(
            id="dotnet-web",
            name=".NET Web Application",
            description=".NET web development with Node.js for frontend tooling",
            category="web",
            base_image="mcr.microsoft.com/dotnet/sdk:8.0",
            required_features=["dotnet", "node"],
            optional_features=["docker-in-docker", "azure-cli", "git"],
            default_extensions=_DOTNET_EXTENSIONS + ["esbenp.prettier-vscode"],
            default_ports=[5000, 5001, 3000],
            default_post_create_command="dotnet restore && npm install",
            default_env_vars=_DOTNET_ENV,
        ),
        Template(
            id="dotnet-microservices",
            name=".NET Microservices",
            description=".NET microservices with Docker Compose",
            category="microservices",
            base_image="mcr.microsoft.com/dotnet/sdk:8.0",
            required_features=["dotnet", "docker-in-docker"],
            optional_features=["kubectl-helm-minikube", "azure-cli", "git"],
            default_extensions=_DOTNET_EXTENSIONS + ["ms-vscode.vscode-docker"],
            default_ports=[5000, 5001, 5010, 5011, 5020, 5021],
            default_post_create_command="dotnet restore && docker-compose up -d",
            default_env_vars=_DOTNET_ENV,
            requires_docker_compose=True,
        ),
        Template(
            id="dotnet-blazor",
            name=".NET Blazor",
            description="Blazor WebAssembly and Server development",
            category="web",
            base_image="mcr.microsoft.com/dotnet/sdk:8.0",
            required_features=["dotnet"],
            optional_features=["node", "git"],
            default_extensions=_DOTNET_EXTENSIONS,
            default_ports=[5000, 5001],
            default_post_create_command="dotnet restore",
            default_env_vars=_DOTNET_ENV,
        ),
        Template(
            id="dotnet-minimal",
            name=".NET Minimal",
            description="Lightweight Alpine-based .NET environment",
            category="runtime",
            base_image="mcr.microsoft.com/dotnet/sdk:8.0-alpine",
            required_features=["dotnet"],
            default_post_create_command="dotnet --version",
            default_env_vars={"DOTNET_CLI_TELEMETRY_OPTOUT": "1"},
        ),
        Template(
            id="node-typescript",
            name="Node.js & TypeScript",
            description="Node.js development with TypeScript",
            category="web",
            base_image="mcr.microsoft.com/vscode/devcontainers/typescript-node:18",
            required_features=["node"],
            optional_features=["docker-in-docker", "git"],
            default_extensions=["ms-vscode.vscode-typescript-next", "esbenp.prettier-vscode"],
            default_ports=[3000, 3001],
            default_post_create_command="npm install",
        ),
        Template(
            id="python-basic",
            name="Python",
            description="Python development environment",
            category="runtime",
            base_image="mcr.microsoft.com/devcontainers/python:3.12",
            required_features=["python"],
            optional_features=["git", "docker-in-docker"],
            default_extensions=["ms-python.python"],
            default_ports=[8000],
            default_post_create_command="pip install -r requirements.txt",
        ),
    ]


def builtin_extensions() -> List[Extension]:
    return [
        Extension(id="ms-dotnettools.csharp", name="C#", publisher="Microsoft",
                  category="language", is_essential=True, required_features=["dotnet"]),
        Extension(id="ms-dotnettools.vscode-dotnet-runtime", name=".NET Install Tool", publisher="Microsoft",
                  category="runtime", is_essential=True, required_features=["dotnet"]),
        Extension(id="ms-vscode.vscode-typescript-next", name="TypeScript Nightly", publisher="Microsoft",
                  category="language", is_essential=True, required_features=["node"]),
        Extension(id="esbenp.prettier-vscode", name="Prettier", publisher="Prettier",
                  category="formatter", required_features=["node"]),
        Extension(id="ms-python.python", name="Python", publisher="Microsoft",
                  category="language", is_essential=True, required_features=["python"]),
        Extension(id="ms-vscode.vscode-docker", name="Docker", publisher="Microsoft",
                  category="tool", is_essential=True, required_features=["docker-in-docker"]),
        Extension(id="ms-kubernetes-tools.vscode-kubernetes-tools", name="Kubernetes", publisher="Microsoft",
                  category="tool", is_essential=True, required_features=["kubectl-helm-minikube"]),
        Extension(id="ms-azuretools.vscode-azure-account", name="Azure Account", publisher="Microsoft",
                  category="cloud", is_essential=True, required_features=["azure-cli"]),
        Extension(id="github.vscode-pull-request-github", name="GitHub Pull Requests", publisher="GitHub",
                  category="tool", required_features=["github-cli"]),
    ]


def builtin_catalog() -> SourceCatalog:
    """Build a fresh catalog holding the built-in data."""
    return SourceCatalog(
        features=builtin_features(),
        templates=builtin_templates(),
        extensions=builtin_extensions(),
    )

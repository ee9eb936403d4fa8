"""
Unit tests for writing devcontainer files.
"""
import json

import pytest
import yaml

from dcforge.CONVERTERS.devcontainer_writer import DevcontainerFileGenerator
from dcforge.MODELS.configuration import BuildConfig, Configuration
from dcforge.UTILS.token_replacer import TokenReplacer


@pytest.fixture
def generator():
    return DevcontainerFileGenerator()


class TestDevcontainerFileGenerator:
    """Tests for DevcontainerFileGenerator.write_configuration."""

    def test_image_configuration(self, tmp_path, generator):
        config = Configuration(
            name="demo",
            image="mcr.microsoft.com/devcontainers/python:3.12",
            features={"ghcr.io/devcontainers/features/git:1": {"ppa": True}},
            extensions=["ms-python.python"],
            forward_ports=[8000],
        )
        result = generator.write_configuration(config, str(tmp_path))

        assert result.success
        path = tmp_path / ".devcontainer" / "devcontainer.json"
        assert result.generated_file_path == str(path)
        assert result.generated_files == [str(path)]
        assert json.loads(path.read_text()) == config.to_devcontainer_dict()

    def test_dockerfile_rendered(self, tmp_path, generator):
        config = Configuration(
            name="demo",
            build=BuildConfig(dockerfile="Dockerfile", context="..", args={"VARIANT": "3.12"}),
            container_env={"TZ": "UTC"},
            workspace_folder="/workspaces/demo",
        )
        result = generator.write_configuration(config, str(tmp_path), base_image="python:3.12-slim")

        assert result.success
        dockerfile = (tmp_path / ".devcontainer" / "Dockerfile").read_text()
        assert "FROM python:3.12-slim" in dockerfile
        assert "ARG VARIANT=3.12" in dockerfile
        assert 'ENV TZ="UTC"' in dockerfile
        assert "WORKDIR /workspaces/demo" in dockerfile
        assert result.generated_files[0].endswith("devcontainer.json")

    def test_default_compose_file(self, tmp_path, generator):
        config = Configuration(name="demo", docker_compose_file="docker-compose.yml", service="app")
        result = generator.write_configuration(config, str(tmp_path), base_image="mcr.microsoft.com/dotnet/sdk:8.0")

        assert result.success
        compose = yaml.safe_load((tmp_path / ".devcontainer" / "docker-compose.yml").read_text())
        assert compose["services"]["app"]["image"] == "mcr.microsoft.com/dotnet/sdk:8.0"
        assert len(result.generated_files) == 2

    def test_compose_template_with_tokens(self, tmp_path, generator):
        fragment = "services:\n  app:\n    image: {{project_name}}-dev\n  db:\n    image: postgres:16\n"
        config = Configuration(name="demo", docker_compose_file="docker-compose.yml", service="app")
        result = generator.write_configuration(
            config, str(tmp_path), compose_template=fragment, replacer=TokenReplacer.for_project("MyApp"),
        )
        assert result.success
        text = (tmp_path / ".devcontainer" / "docker-compose.yml").read_text()
        assert "image: myapp-dev" in text

    def test_compose_missing_service(self, tmp_path, generator):
        config = Configuration(name="demo", docker_compose_file="docker-compose.yml", service="web")
        result = generator.write_configuration(config, str(tmp_path), compose_template="services:\n  app: {}\n")
        assert not result.success
        assert result.validation_errors == ["Compose file has no service named 'web'"]
        assert not (tmp_path / ".devcontainer").exists()

    def test_unserializable_value(self, tmp_path, generator):
        config = Configuration(name="demo", image="ubuntu", features={"f": {"ratio": float("nan")}})
        result = generator.write_configuration(config, str(tmp_path))
        assert not result.success
        assert result.validation_errors
        assert not (tmp_path / ".devcontainer").exists()

    @pytest.mark.parametrize("dockerfile", ["/tmp/elsewhere/Dockerfile", "../../outside/Dockerfile", "devcontainer.json"])
    def test_dockerfile_outside_project_rejected(self, tmp_path, generator, dockerfile):
        project = tmp_path / "project"
        config = Configuration(name="demo", build=BuildConfig(dockerfile=dockerfile))
        result = generator.write_configuration(config, str(project))

        assert not result.success
        assert result.validation_errors == [f"File path '{dockerfile}' points outside the project directory"]
        assert not (project / ".devcontainer").exists()
        assert not (tmp_path / "outside").exists()

    def test_compose_file_in_project_root_allowed(self, tmp_path, generator):
        config = Configuration(name="demo", docker_compose_file="../docker-compose.yml", service="app")
        result = generator.write_configuration(config, str(tmp_path), base_image="ubuntu:22.04")

        assert result.success
        assert (tmp_path / "docker-compose.yml").is_file()

    def test_absolute_compose_file_rejected(self, tmp_path, generator):
        target = tmp_path / "elsewhere" / "docker-compose.yml"
        config = Configuration(name="demo", docker_compose_file=str(target), service="app")
        result = generator.write_configuration(config, str(tmp_path / "project"), base_image="ubuntu:22.04")

        assert not result.success
        assert not target.exists()

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
Integration tests for the full devcontainer initialization pipeline.
"""
import json
import threading

import pytest
import yaml

from dcforge.MANAGERS.destination_lock import MARKER_NAME, STAGING_PREFIX
from dcforge.MANAGERS.devcontainer_service import DevcontainerService
from dcforge.MANAGERS.template_extractor import TemplateArchiveExtractor
from dcforge.MODELS.configuration import Configuration
from dcforge.MODELS.options import DevcontainerOptions
from dcforge.MODELS.results import ErrorCode
from dcforge.UTILS.cancellation import CancellationToken

FEED_URL = "https://feed.example/v3/index.json"

PACKAGE_PROPERTIES = {
    "baseImage": "mcr.microsoft.com/dotnet/sdk:8.0",
    "requiredFeatures": "dotnet",
    "vscodeExtensions": "ms-dotnettools.csharp",
    "defaultPorts": "5000",
    "requiredEnv:API_KEY": "Key for the backend API",
}

PACKAGE_FILES = {
    "content/{{ProjectName}}.csproj": "<Project><Name>{{ProjectName}}</Name></Project>",
}


def read_devcontainer(project):
    return json.loads((project / ".devcontainer" / "devcontainer.json").read_text())


def leftovers(project):
    return [p.name for p in project.iterdir() if p.name == MARKER_NAME or p.name.startswith(STAGING_PREFIX)]


@pytest.fixture
def service():
    return DevcontainerService()


class TestTemplatePipeline:
    """Tests using built-in templates."""

    def test_generates_devcontainer(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="demo",
            output_path=str(project),
            template="dotnet-web",
            features=["git"],
            ports=["3000", "8080"],
        ))

        assert result.success, result.errors
        data = read_devcontainer(project)
        assert data["name"] == "demo"
        assert data["image"] == "mcr.microsoft.com/dotnet/sdk:8.0"
        assert data["forwardPorts"] == [5000, 5001, 3000, 8080]
        assert set(data["features"]) == {
            "ghcr.io/devcontainers/features/dotnet:2",
            "ghcr.io/devcontainers/features/node:1",
            "ghcr.io/devcontainers/features/git:1",
        }
        extensions = data["customizations"]["vscode"]["extensions"]
        assert "ms-dotnettools.csharp" in extensions
        assert "ms-vscode.vscode-typescript-next" in extensions
        assert len(extensions) == len(set(extensions))
        assert data["remoteEnv"]["DOTNET_CLI_TELEMETRY_OPTOUT"] == "1"
        assert data["postCreateCommand"] == "dotnet restore && npm install"
        assert result.generated_files == [str((project / ".devcontainer" / "devcontainer.json").resolve())]
        assert leftovers(project) == []

    def test_custom_settings_win(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="demo",
            output_path=str(project),
            template="python-basic",
            post_create_command="pip install -e .",
            custom_settings=Configuration(
                post_create_command="make setup",
                customizations={"vscode": {"settings": {"python.defaultInterpreterPath": "/usr/local/bin/python"}}},
            ),
        ))
        assert result.success
        data = read_devcontainer(project)
        assert data["postCreateCommand"] == "make setup"
        assert data["customizations"]["vscode"]["settings"] == {
            "python.defaultInterpreterPath": "/usr/local/bin/python",
        }
        assert data["customizations"]["vscode"]["extensions"] == ["ms-python.python"]

    def test_feature_options_applied(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="demo",
            output_path=str(project),
            template="node-typescript",
            feature_options={"node": {"version": "20"}},
        ))
        assert result.success
        assert read_devcontainer(project)["features"]["ghcr.io/devcontainers/features/node:1"]["version"] == "20"

    def test_invalid_option_fails_validation(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="demo",
            output_path=str(project),
            template="node-typescript",
            feature_options={"node": {"version": "4"}},
        ))
        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION
        assert not (project / ".devcontainer").exists()

    def test_docker_compose(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="shop",
            output_path=str(project),
            template="dotnet-microservices",
            use_docker_compose=True,
        ))

        assert result.success, result.errors
        data = read_devcontainer(project)
        assert "image" not in data
        assert data["dockerComposeFile"] == "docker-compose.yml"
        assert data["service"] == "app"
        compose = yaml.safe_load((project / ".devcontainer" / "docker-compose.yml").read_text())
        assert compose["services"]["app"]["image"] == "mcr.microsoft.com/dotnet/sdk:8.0"
        assert len(result.generated_files) == 2

    def test_compose_required_warning(self, tmp_path, service):
        result = service.initialize(DevcontainerOptions(
            name="shop", output_path=str(tmp_path / "p"), template="dotnet-microservices",
        ))
        assert result.success
        assert any("requires Docker Compose" in w for w in result.warnings)

    def test_conflict_writes_nothing(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="demo",
            output_path=str(project),
            template="dotnet-basic",
            features=["docker-in-docker", "docker-outside-of-docker"],
        ))
        assert not result.success
        assert result.error_code == ErrorCode.CONFLICT
        assert "docker-in-docker" in result.first_error
        assert list(project.iterdir()) == []

    def test_unknown_feature(self, tmp_path, service):
        result = service.initialize(DevcontainerOptions(
            name="demo", output_path=str(tmp_path / "p"), features=["fortran"],
        ))
        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.first_error == "Unknown features: fortran"

    def test_unknown_template(self, tmp_path, service):
        result = service.initialize(DevcontainerOptions(
            name="demo", output_path=str(tmp_path / "p"), template="cobol-mainframe",
        ))
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_existing_configuration(self, tmp_path, service):
        project = tmp_path / "project"
        options = DevcontainerOptions(name="demo", output_path=str(project), template="python-basic")
        assert service.initialize(options).success

        again = service.initialize(options)
        assert again.error_code == ErrorCode.ALREADY_EXISTS

        forced = service.initialize(options.model_copy(update={"force": True, "post_create_command": "make"}))
        assert forced.success
        assert read_devcontainer(project)["postCreateCommand"] == "make"

    def test_without_template(self, tmp_path, service):
        project = tmp_path / "project"
        result = service.initialize(DevcontainerOptions(
            name="scratch", output_path=str(project), features=["python"], base_image="python:3.12",
        ))
        assert result.success
        assert read_devcontainer(project)["image"] == "python:3.12"

    def test_cancelled(self, tmp_path, service):
        token = CancellationToken()
        token.cancel()
        project = tmp_path / "project"
        result = service.initialize(
            DevcontainerOptions(name="demo", output_path=str(project), template="python-basic"), cancel=token,
        )
        assert result.error_code == ErrorCode.CANCELLED
        assert list(project.iterdir()) == []


class TestPackagePipeline:
    """Tests using template packages."""

    def test_package_template(self, tmp_path, nupkg_writer, service):
        feed = tmp_path / "feed"
        nupkg_writer(feed, "Contoso.Api", "1.0.0", properties=PACKAGE_PROPERTIES, files=PACKAGE_FILES)
        project = tmp_path / "project"

        result = service.initialize(DevcontainerOptions(
            name="MyApp",
            output_path=str(project),
            template_package="Contoso.Api",
            sources=[str(feed)],
            env={"API_KEY": "secret"},
        ))

        assert result.success, result.errors
        assert (project / "MyApp.csproj").read_text() == "<Project><Name>MyApp</Name></Project>"
        data = read_devcontainer(project)
        assert data["image"] == "mcr.microsoft.com/dotnet/sdk:8.0"
        assert data["remoteEnv"] == {"API_KEY": "secret"}
        assert data["forwardPorts"] == [5000]
        assert "ghcr.io/devcontainers/features/dotnet:2" in data["features"]
        assert len(result.generated_files) == 2
        assert leftovers(project) == []

    def test_required_env_missing(self, tmp_path, nupkg_writer, service):
        feed = tmp_path / "feed"
        nupkg_writer(feed, "Contoso.Api", "1.0.0", properties=PACKAGE_PROPERTIES, files=PACKAGE_FILES)
        project = tmp_path / "project"

        result = service.initialize(DevcontainerOptions(
            name="MyApp", output_path=str(project), template_package="Contoso.Api", sources=[str(feed)],
        ))
        assert result.error_code == ErrorCode.VALIDATION
        assert "API_KEY" in result.first_error
        assert list(project.iterdir()) == []

    def test_missing_package(self, tmp_path, service):
        (tmp_path / "feed").mkdir()
        result = service.initialize(DevcontainerOptions(
            name="MyApp", output_path=str(tmp_path / "p"), template_package="Nope", sources=[str(tmp_path / "feed")],
        ))
        assert result.error_code == ErrorCode.NOT_FOUND


class TestConcurrentInitialization:
    """Two callers racing for the same destination."""

    def test_one_caller_wins(self, tmp_path, make_nupkg, fake_feed):
        client = fake_feed(archives={
            ("contoso.api", "1.0.0"): make_nupkg(
                "Contoso.Api", "1.0.0", properties={"requiredFeatures": "git"}, files=PACKAGE_FILES,
            ),
        })
        client.download_gate = threading.Event()
        service = DevcontainerService(extractor=TemplateArchiveExtractor(feed_client=client))
        project = tmp_path / "project"
        results = {}

        def first_caller():
            results["first"] = service.initialize(DevcontainerOptions(
                name="MyApp", output_path=str(project), template_package="Contoso.Api", sources=[FEED_URL],
            ))

        thread = threading.Thread(target=first_caller)
        thread.start()
        try:
            assert client.download_started.wait(5)
            results["second"] = service.initialize(DevcontainerOptions(
                name="Other", output_path=str(project), template="python-basic",
            ))
        finally:
            client.download_gate.set()
            thread.join(10)

        assert results["first"].success, results["first"].errors
        assert not results["second"].success
        assert results["second"].error_code == ErrorCode.IN_PROGRESS
        assert "already being initialized" in results["second"].first_error

        assert read_devcontainer(project)["name"] == "MyApp"
        assert (project / "MyApp.csproj").exists()
        assert leftovers(project) == []

    def test_extractions_race(self, tmp_path, make_nupkg, fake_feed):
        client = fake_feed(archives={
            ("contoso.api", "1.0.0"): make_nupkg("Contoso.Api", "1.0.0", files=PACKAGE_FILES),
        })
        client.download_gate = threading.Event()
        extractor = TemplateArchiveExtractor(feed_client=client)
        project = tmp_path / "project"
        results = {}

        def extract(key, name):
            results[key] = extractor.extract("Contoso.Api", str(project), name, sources=[FEED_URL])

        thread = threading.Thread(target=extract, args=("first", "MyApp"))
        thread.start()
        try:
            assert client.download_started.wait(5)
            extract("second", "Other")
        finally:
            client.download_gate.set()
            thread.join(10)

        assert results["first"].success
        assert results["second"].error_code == ErrorCode.IN_PROGRESS
        assert sorted(p.name for p in project.iterdir()) == ["MyApp.csproj"]


class TestValidateFile:
    """Tests for validating existing files."""

    def test_valid_file(self, tmp_path, service):
        path = tmp_path / "devcontainer.json"
        path.write_text("""{
            // generated elsewhere
            "name": "demo",
            "image": "mcr.microsoft.com/devcontainers/base:ubuntu",
            "features": {"ghcr.io/devcontainers/features/git:1": {}},
            "forwardPorts": [3000],
        }""")
        result = service.validate_file(str(path))
        assert result.is_valid, result.errors

    def test_invalid_file(self, tmp_path, service):
        path = tmp_path / "devcontainer.json"
        path.write_text('{"name": "demo", "forwardPorts": [99999]}')
        result = service.validate_file(str(path))
        assert not result.is_valid
        assert len(result.errors) == 2

    def test_unreadable_file(self, tmp_path, service):
        path = tmp_path / "devcontainer.json"
        path.write_text("{broken")
        result = service.validate_file(str(path))
        assert not result.is_valid
        assert result.errors[0].startswith("Cannot read")


class TestAddFeatures:
    """Tests for updating an existing devcontainer.json."""

    @pytest.fixture
    def project(self, tmp_path):
        folder = tmp_path / ".devcontainer"
        folder.mkdir()
        (folder / "devcontainer.json").write_text("""{
            // kept by hand
            "name": "demo",
            "image": "mcr.microsoft.com/devcontainers/base:ubuntu",
            "features": {
                "ghcr.io/devcontainers/features/git:1": {"ppa": false},
                "ghcr.io/example/custom:1": {}
            },
            "forwardPorts": [3000],
        }""")
        return tmp_path

    def test_adds_features(self, project, service):
        result = service.add_features(str(project), ["python"], ports=[8000, 3000], env={"DEBUG": "1"})
        assert result.success, result.errors
        path = project / ".devcontainer" / "devcontainer.json"
        assert result.generated_files == [str(path)]

        data = read_devcontainer(project)
        assert data["features"]["ghcr.io/devcontainers/features/git:1"]["ppa"] is False
        assert "ghcr.io/example/custom:1" in data["features"]
        assert data["features"]["ghcr.io/devcontainers/features/python:1"]["version"] == "3.12"
        assert data["forwardPorts"] == [3000, 8000]
        assert data["remoteEnv"] == {"DEBUG": "1"}
        assert "ms-python.python" in data["customizations"]["vscode"]["extensions"]
        assert [p.name for p in path.parent.iterdir()] == ["devcontainer.json"]

    def test_accepts_file_path(self, project, service):
        path = project / ".devcontainer" / "devcontainer.json"
        result = service.add_features(str(path), ["node"], include_recommended_extensions=False)
        assert result.success, result.errors
        data = read_devcontainer(project)
        assert "ghcr.io/devcontainers/features/node:1" in data["features"]
        assert "customizations" not in data

    def test_conflict_with_existing_feature(self, project, service):
        service.add_features(str(project), ["docker-in-docker"])
        before = (project / ".devcontainer" / "devcontainer.json").read_text()

        result = service.add_features(str(project), ["docker-outside-of-docker"])
        assert not result.success
        assert result.error_code == ErrorCode.CONFLICT
        assert (project / ".devcontainer" / "devcontainer.json").read_text() == before

    def test_unknown_feature(self, project, service):
        result = service.add_features(str(project), ["no-such-feature"])
        assert result.error_code == ErrorCode.NOT_FOUND
        assert "no-such-feature" in result.first_error

    def test_missing_file(self, tmp_path, service):
        result = service.add_features(str(tmp_path), ["git"])
        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.first_error.startswith("File not found")

    def test_unreadable_file(self, tmp_path, service):
        path = tmp_path / "devcontainer.json"
        path.write_text("{broken")
        result = service.add_features(str(path), ["git"])
        assert result.error_code == ErrorCode.VALIDATION
        assert result.first_error.startswith("Cannot read")
        assert path.read_text() == "{broken"

    def test_invalid_result_not_written(self, project, service):
        result = service.add_features(str(project), ["git"], ports=[70000])
        assert result.error_code == ErrorCode.VALIDATION
        assert read_devcontainer(project)["forwardPorts"] == [3000]

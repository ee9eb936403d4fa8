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
Devcontainer initialization pipeline.
Template selection, feature resolution, merge, validation and file
generation run inside one destination lock; nothing reaches the
destination unless every stage succeeds.
"""
import json
import logging
import os
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..BUILDERS.merge_engine import DEFAULT_COMPOSE_SERVICE, ConfigurationMergeEngine, MergeInput
from ..CATALOG.builtin import builtin_catalog
from ..CATALOG.catalog import SourceCatalog
from ..CONFIG.settings import Settings
from ..CONVERTERS.devcontainer_writer import DEVCONTAINER_DIR, DEVCONTAINER_JSON, DevcontainerFileGenerator
from ..MODELS.options import DevcontainerOptions
from ..MODELS.package import DEFAULT_BASE_IMAGE
from ..MODELS.results import ErrorCode, PipelineResult, ValidationResult
from ..MODELS.template import Template
from ..PARSERS.compose_parser import ComposeParser
from ..PARSERS.devcontainer_parser import DevcontainerParser
from ..REGISTRY.discovery import PackageDiscoveryService
from ..REGISTRY.discovery_cache import DiscoveryCache
from ..REGISTRY.feed_client import FeedClient
from ..REGISTRY.package_reference import PackageReference
from ..RUNNERS.feature_resolver import FeatureResolver
from ..UTILS.cancellation import CancellationToken, OperationCancelled, check_cancelled
from ..UTILS.token_replacer import TokenReplacer
from ..VALIDATORS.configuration_validator import ConfigurationValidator
from .destination_lock import DestinationError, DestinationLock
from .template_extractor import TemplateArchiveExtractor

logger = logging.getLogger(__name__)


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _failure(errors: List[str], code: ErrorCode, warnings: List[str], **fields) -> PipelineResult:
    return PipelineResult(success=False, errors=errors, error_code=code, warnings=_unique(warnings), **fields)


class DevcontainerService:
    """
    Runs discovery, extraction, resolution, merge, validation and generation in order.
    """

    def __init__(
        self,
        catalog: Optional[SourceCatalog] = None,
        discovery: Optional[PackageDiscoveryService] = None,
        extractor: Optional[TemplateArchiveExtractor] = None,
        generator: Optional[DevcontainerFileGenerator] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initializes the service.

        :param catalog: Features, templates and extensions; defaults to the built-in catalog.
        :param discovery: Package discovery used to list template packages.
        :param extractor: Extractor for package based templates.
        :param generator: Writer for the final files.
        :param settings: Default sources and network tunables.
        """
        self.settings = settings or Settings()
        self.catalog = catalog or builtin_catalog()
        feed_client = FeedClient(
            timeout=self.settings.timeout,
            page_size=self.settings.page_size,
            max_pages=self.settings.max_pages,
        )
        self.discovery = discovery or PackageDiscoveryService(
            feed_client=feed_client,
            cache=DiscoveryCache(ttl=timedelta(seconds=self.settings.cache_ttl)),
            default_tag=self.settings.discovery_tag,
            fallback_tag=self.settings.fallback_tag,
        )
        self.extractor = extractor or TemplateArchiveExtractor(feed_client=feed_client)
        self.generator = generator or DevcontainerFileGenerator()
        self.resolver = FeatureResolver(self.catalog)
        self.merge_engine = ConfigurationMergeEngine()
        self.validator = ConfigurationValidator(self.catalog)

    def initialize(self, options: DevcontainerOptions, cancel: Optional[CancellationToken] = None) -> PipelineResult:
        """
        Generate devcontainer files for a project.

        :param options: What to generate and where.
        :param cancel: Checked at every I/O boundary.
        :return: The outcome; errors[0] is the first fatal error.
        """
        if options is None:
            raise ValueError("options must not be None")

        try:
            with DestinationLock(options.output_path, force=options.force) as lock:
                result = self._run(options, lock, cancel)
                if not result.success:
                    return result
                check_cancelled(cancel, "commit")
                result.generated_files = lock.commit()
                return result
        except DestinationError as e:
            logger.warning(str(e))
            return _failure([str(e)], e.code, [])
        except OperationCancelled as e:
            return _failure([str(e)], ErrorCode.CANCELLED, [])

    def _run(self, options: DevcontainerOptions, lock: DestinationLock, cancel) -> PipelineResult:
        warnings: List[str] = []

        template, error = self._select_template(options, lock, cancel)
        if error is not None:
            return error

        missing_env = [name for name in template.required_env_vars if not options.env.get(name)]
        if missing_env:
            errors = [
                f"Required environment variable {name} is not set ({template.required_env_vars[name]})"
                for name in missing_env
            ]
            return _failure(errors, ErrorCode.VALIDATION, warnings)

        requested = _unique(list(template.required_features) + list(options.features))
        resolution = self.resolver.resolve(requested)
        warnings.extend(resolution.warnings)
        if not resolution.success:
            errors = [resolution.error_message] + [
                f"{', '.join(c.members)}: {c.reason}" for c in resolution.blocking_conflicts
            ]
            return _failure(_unique(errors), resolution.error_code, warnings, resolution=resolution)

        replacer = TokenReplacer.for_project(options.name, options.description, template.id)
        extensions = list(options.extensions)
        if options.include_recommended_extensions:
            extensions += self.catalog.recommended_extensions(f.id for f in resolution.resolved_features)

        selections = MergeInput(
            name=options.name,
            base_image=None if options.use_docker_compose else options.base_image,
            features=resolution.resolved_features,
            feature_options=options.feature_options,
            extensions=extensions,
            ports=options.ports,
            env=options.env,
            container_env=options.container_env,
            post_create_command=options.post_create_command,
            workspace_folder=options.workspace_folder,
            use_docker_compose=options.use_docker_compose,
            compose_service=self._compose_service(template, replacer),
            overlay=options.custom_settings,
        )
        config = self.merge_engine.merge(template, selections)

        validation = self.validator.validate(
            config,
            resolved_features=resolution.resolved_features,
            requires_docker_compose=template.requires_docker_compose,
        )
        warnings.extend(validation.warnings)
        if not validation.is_valid:
            return _failure(validation.errors, ErrorCode.VALIDATION, warnings,
                            configuration=config, resolution=resolution, validation=validation)

        check_cancelled(cancel, "file generation")
        generated = self.generator.write_configuration(
            config,
            str(lock.staging),
            base_image=options.base_image or template.base_image,
            compose_template=template.docker_compose_template,
            replacer=replacer,
        )
        if not generated.success:
            errors = generated.validation_errors or [generated.error_message]
            code = ErrorCode.VALIDATION if generated.validation_errors else ErrorCode.IO
            return _failure(errors, code, warnings, configuration=config, resolution=resolution, validation=validation)

        return PipelineResult(
            success=True,
            configuration=config,
            resolution=resolution,
            validation=validation,
            warnings=_unique(warnings),
        )

    def _select_template(self, options: DevcontainerOptions, lock: DestinationLock, cancel):
        """Return (template, None) or (None, failure)."""
        if options.template_package:
            ref = PackageReference(package_id=options.template_package, version=options.template_version)
            staged = self.extractor.stage(
                ref,
                lock.staging,
                options.name,
                options.description,
                sources=options.sources or self.settings.sources,
                cancel=cancel,
            )
            if not staged.success:
                return None, _failure([staged.error_message], staged.error_code, [])
            return staged.manifest, None

        if options.template:
            template = self.catalog.get_template(options.template)
            if template is None:
                return None, _failure([f"Unknown template: {options.template}"], ErrorCode.NOT_FOUND, [])
            return template, None

        return Template(
            id="custom",
            name=options.name,
            base_image=options.base_image or DEFAULT_BASE_IMAGE,
        ), None

    @staticmethod
    def _compose_service(template: Template, replacer: TokenReplacer) -> str:
        if template.docker_compose_template:
            try:
                services = ComposeParser(replacer).parse_from_string(template.docker_compose_template).services
            except ValueError as e:
                logger.warning("Ignoring unreadable compose fragment in %s: %s", template.id, e)
                return DEFAULT_COMPOSE_SERVICE
            if services:
                return services[0]
        return DEFAULT_COMPOSE_SERVICE

    def validate_file(self, path: str) -> ValidationResult:
        """
        Validate an existing devcontainer.json.

        :param path: Path of the file.
        :return: The validation result; parse failures are reported as errors.
        """
        try:
            config = DevcontainerParser().parse(path)
        except (OSError, ValueError, TypeError) as e:
            return ValidationResult(is_valid=False, errors=[f"Cannot read {path}: {e}"])
        return self.validator.validate(config)

    def add_features(
        self,
        path: str,
        features: Iterable[str],
        feature_options: Optional[Dict[str, Dict[str, Any]]] = None,
        extensions: Iterable[str] = (),
        ports: Iterable[Union[int, str]] = (),
        env: Optional[Dict[str, str]] = None,
        include_recommended_extensions: bool = True,
    ) -> PipelineResult:
        """
        Add features and settings to an existing devcontainer.json in place.

        Features already in the file keep their options; catalog features in
        the file take part in conflict detection with the new ones.

        :param path: The devcontainer.json, or a project directory containing .devcontainer/devcontainer.json.
        :param features: Feature references to add.
        :param feature_options: Option overrides keyed by feature reference.
        :param extensions: Editor extensions to add.
        :param ports: Ports to forward.
        :param env: remoteEnv entries to add; existing keys are replaced.
        :param include_recommended_extensions: Also add the extensions the features recommend.
        :return: The outcome; generated_files holds the rewritten file.
        """
        target = Path(path)
        if target.is_dir():
            target = target / DEVCONTAINER_DIR / DEVCONTAINER_JSON
        if not target.is_file():
            return _failure([f"File not found: {target}"], ErrorCode.NOT_FOUND, [])

        try:
            existing = DevcontainerParser().parse(str(target))
        except (OSError, ValueError, TypeError) as e:
            return _failure([f"Cannot read {target}: {e}"], ErrorCode.VALIDATION, [])

        warnings: List[str] = []
        known = [key for key in existing.features if self.catalog.has_feature(key)]
        resolution = self.resolver.resolve(_unique(known + list(features)))
        warnings.extend(resolution.warnings)
        if not resolution.success:
            errors = [resolution.error_message] + [
                f"{', '.join(c.members)}: {c.reason}" for c in resolution.blocking_conflicts
            ]
            return _failure(_unique(errors), resolution.error_code, warnings, resolution=resolution)

        extensions = list(extensions)
        if include_recommended_extensions:
            extensions += self.catalog.recommended_extensions(f.id for f in resolution.resolved_features)

        config = self.merge_engine.merge(existing, MergeInput(
            features=resolution.resolved_features,
            feature_options=feature_options or {},
            extensions=extensions,
            ports=list(ports),
            env=env or {},
        ))
        validation = self.validator.validate(config)
        warnings.extend(validation.warnings)
        if not validation.is_valid:
            return _failure(validation.errors, ErrorCode.VALIDATION, warnings,
                            configuration=config, resolution=resolution, validation=validation)

        try:
            text = json.dumps(config.to_devcontainer_dict(), indent=2, allow_nan=False)
        except (TypeError, ValueError) as e:
            return _failure([f"Configuration is not JSON serializable: {e}"], ErrorCode.VALIDATION, warnings,
                            configuration=config, resolution=resolution, validation=validation)

        try:
            _replace_text(target, text + "\n")
        except OSError as e:
            return _failure([f"Cannot write {target}: {e}"], ErrorCode.IO, warnings,
                            configuration=config, resolution=resolution, validation=validation)

        logger.info("Updated %s, %d features configured", target, len(config.features))
        return PipelineResult(
            success=True,
            configuration=config,
            resolution=resolution,
            validation=validation,
            generated_files=[str(target)],
            warnings=_unique(warnings),
        )


def _replace_text(target: Path, text: str):
    """Write text next to target and swap it in, so readers never see a partial file."""
    fd, temp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp, target)
    except OSError:
        if os.path.exists(temp):
            os.unlink(temp)
        raise

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
Read-only catalog of features, templates and editor extensions.
The catalog is constructed explicitly and passed to whoever needs it.
"""

from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..MODELS.feature import Feature, FeatureCategory
from ..MODELS.template import Template, TemplateCategory


class Extension(BaseModel):
    """An editor extension recommended for one or more features."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    publisher: str = ""
    category: str = "other"
    tags: List[str] = []
    is_essential: bool = False
    required_features: List[str] = []


def _index(items, kind: str) -> Dict[str, object]:
    index = {}
    for item in items:
        key = item.id.lower()
        if key in index:
            raise ValueError(f"Duplicate {kind} id in catalog: {item.id}")
        index[key] = item
    return index


class SourceCatalog:
    """
    Keyed lookup and search over a fixed set of features, templates and extensions.
    Instances never change; extend() returns a new catalog.
    """

    def __init__(
        self,
        features: Iterable[Feature] = (),
        templates: Iterable[Template] = (),
        extensions: Iterable[Extension] = (),
    ):
        self._features = tuple(sorted(features, key=lambda f: f.id.lower()))
        self._templates = tuple(sorted(templates, key=lambda t: t.id.lower()))
        self._extensions = tuple(extensions)
        self._feature_index = _index(self._features, "feature")
        self._template_index = _index(self._templates, "template")
        _index(self._extensions, "extension")

    @property
    def features(self) -> List[Feature]:
        return list(self._features)

    @property
    def templates(self) -> List[Template]:
        return list(self._templates)

    @property
    def extensions(self) -> List[Extension]:
        return list(self._extensions)

    def get_feature(self, reference: str) -> Optional[Feature]:
        """
        Look up a feature by short name, qualified id or repository.

        Args:
            reference: e.g. "node", "ghcr.io/devcontainers/features/node:1"

        Returns:
            The feature, or None when nothing matches
        """
        if not reference:
            return None
        feature = self._feature_index.get(reference.strip().lower())
        if feature is not None:
            return feature
        for candidate in self._features:
            if candidate.matches(reference):
                return candidate
        return None

    def has_feature(self, reference: str) -> bool:
        return self.get_feature(reference) is not None

    def get_template(self, template_id: str) -> Optional[Template]:
        if not template_id:
            return None
        return self._template_index.get(template_id.strip().lower())

    def search_features(self, query: str = "") -> List[Feature]:
        """Case-insensitive match on id, name, description, category and tags."""
        needle = (query or "").strip().lower()
        if not needle:
            return self.features
        return [
            f for f in self._features
            if needle in f.id.lower()
            or needle in f.name.lower()
            or needle in f.description.lower()
            or needle in f.category.value
            or any(needle in tag.lower() for tag in f.tags)
        ]

    def search_templates(self, query: str = "") -> List[Template]:
        needle = (query or "").strip().lower()
        if not needle:
            return self.templates
        return [
            t for t in self._templates
            if needle in t.id.lower()
            or needle in t.name.lower()
            or needle in t.description.lower()
            or needle in t.category.value
        ]

    def features_by_category(self, category: Union[str, FeatureCategory]) -> List[Feature]:
        wanted = FeatureCategory.parse(category)
        return [f for f in self._features if f.category is wanted]

    def templates_by_category(self, category: Union[str, TemplateCategory]) -> List[Template]:
        wanted = TemplateCategory.parse(category)
        return [t for t in self._templates if t.category is wanted]

    def feature_categories(self) -> List[FeatureCategory]:
        return sorted({f.category for f in self._features}, key=lambda c: c.value)

    def recommended_extensions(self, feature_refs: Iterable[str], essential_only: bool = True) -> List[str]:
        """
        Extensions recommended for the given features, in catalog order.

        Args:
            feature_refs: Feature references in any accepted form
            essential_only: Only return extensions flagged as essential

        Returns:
            Extension ids without duplicates
        """
        feature_ids = set()
        for ref in feature_refs:
            feature = self.get_feature(ref)
            if feature is not None:
                feature_ids.add(feature.id.lower())

        recommended = []
        for extension in self._extensions:
            if essential_only and not extension.is_essential:
                continue
            if any(req.lower() in feature_ids for req in extension.required_features):
                if extension.id not in recommended:
                    recommended.append(extension.id)
        return recommended

    def extend(
        self,
        features: Iterable[Feature] = (),
        templates: Iterable[Template] = (),
        extensions: Iterable[Extension] = (),
    ) -> "SourceCatalog":
        """Return a new catalog with extra entries; an entry with an existing id replaces it."""
        def merged(existing, extra):
            items = {item.id.lower(): item for item in existing}
            for item in extra:
                items[item.id.lower()] = item
            return items.values()

        return SourceCatalog(
            features=merged(self._features, features),
            templates=merged(self._templates, templates),
            extensions=merged(self._extensions, extensions),
        )

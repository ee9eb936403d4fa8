"""
Utilities for replacing {{Token}} placeholders in template files and paths.
"""
import re
from pathlib import PurePosixPath
from typing import Dict, Optional

# Extensions whose content is text and gets token substitution
PROCESSABLE_EXTENSIONS = {
    ".cs", ".csproj", ".json", ".xml", ".yml", ".yaml", ".md", ".txt",
    ".config", ".props", ".targets", ".sh", ".env", ".toml",
}
PROCESSABLE_NAMES = {"dockerfile", ".gitignore", ".dockerignore", ".env"}

TOKEN_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_.]*)\}\}")


class TokenReplacer:
    """
    Replaces named placeholders such as {{ProjectName}} with project values.
    Unknown tokens are left untouched.
    """

    def __init__(self, context: Dict[str, str]):
        self.context = dict(context)

    @classmethod
    def for_project(
        cls, project_name: str, description: str = "", template: Optional[str] = None
    ) -> "TokenReplacer":
        """
        Build the standard token set for a project.

        :param project_name: Name substituted for the ProjectName family of tokens.
        :param description: Text for {{Description}}.
        :param template: Template id for {{Template}}.
        :return: A replacer bound to those values.
        """
        context = {
            "ProjectName": project_name,
            "Project.Name": project_name,
            "PROJECT_NAME": project_name.upper(),
            "project_name": project_name.lower(),
            "Description": description,
            "Project.Description": description,
        }
        if template:
            context["Template"] = template
            context["Project.Template"] = template
        return cls(context)

    def replace(self, text: str) -> str:
        def substitute(match):
            return self.context.get(match.group(1), match.group(0))

        return TOKEN_PATTERN.sub(substitute, text)

    def replace_path(self, relative_path: str) -> str:
        """Substitute tokens in each segment of a forward-slash relative path."""
        return "/".join(self.replace(part) for part in relative_path.split("/"))

    @staticmethod
    def is_processable(relative_path: str) -> bool:
        path = PurePosixPath(relative_path)
        if path.name.lower() in PROCESSABLE_NAMES:
            return True
        return path.suffix.lower() in PROCESSABLE_EXTENSIONS

"""Sandboxed Jinja2 environment for outbound text.

Prompts, commit messages, pull request bodies and issue comments all embed
text written by strangers (feedback titles, issue bodies). Rendering happens
in a ``SandboxedEnvironment`` with ``StrictUndefined``: values are never
evaluated as templates and a missing variable is an error, not a blank.
"""

from pathlib import Path, PurePosixPath
from typing import Any

from jinja2 import BaseLoader, FileSystemLoader, PackageLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment


class SecureTemplateEngine:
    """Renders templates shipped in ``feedbacker/templates`` or a given directory.

    Output is Markdown or plain text, so autoescaping is off; block tags are
    trimmed so they leave no blank lines behind.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        loader: BaseLoader
        if template_dir is None:
            loader = PackageLoader("feedbacker", "templates")
        else:
            if not template_dir.is_dir():
                raise ValueError(f"Template directory not found: {template_dir}")
            loader = FileSystemLoader(str(template_dir))

        self.template_dir = template_dir
        self.env = SandboxedEnvironment(
            loader=loader,
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    @staticmethod
    def _check_name(name: str) -> str:
        path = PurePosixPath(name)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"Template name escapes the template root: {name}")
        return path.as_posix()

    def render(self, name: str, context: dict[str, Any]) -> str:
        """Render ``name`` with ``context``.

        Raises:
            ValueError: The name points outside the template root
            jinja2.TemplateNotFound: No such template
            jinja2.UndefinedError: The template used a variable not in context
        """
        template = self.env.get_template(self._check_name(name))
        return template.render(**context)

    def list_templates(self) -> list[str]:
        return sorted(self.env.list_templates(extensions=["j2"]))

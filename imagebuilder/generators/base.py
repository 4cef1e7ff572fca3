"""Common behaviour shared by all file generators."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

from imagebuilder.definition import (
    Definition,
    DefinitionFile,
    DefinitionTargetLXC,
    DefinitionTargetLXD,
    TemplateError,
    render_template,
)
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import ImageMetadataTemplate, LXDImage

StrPath = Union[str, os.PathLike]

DEFAULT_TEMPLATE_WHEN = ("create", "copy")


class NotSupportedError(Exception):
    """Raised when a generator does not support the requested image kind."""

    def __init__(self, message: str = "Not supported") -> None:
        super().__init__(message)


class Generator:
    """A generator acting on one file entry of an image definition.

    When the file entry asks for template rendering, its content, path and
    source are rendered against the definition up front.
    """

    def __init__(self, logger: Optional[logging.Logger], cache_dir: StrPath,
                 source_dir: StrPath, def_file: DefinitionFile,
                 definition: Definition) -> None:
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.cache_dir = Path(cache_dir)
        self.source_dir = Path(source_dir)
        self.definition = definition
        self.def_file = copy.deepcopy(def_file)

        if self.def_file.pongo:
            for attribute in ("content", "path", "source"):
                value = getattr(self.def_file, attribute)
                setattr(self.def_file, attribute, self._render(value))

    def _render(self, value: str) -> str:
        try:
            return render_template(value, self.definition)
        except TemplateError as exc:
            self.logger.warning("Failed to render template: %s", exc)
            return value

    def _in_rootfs(self, path: str) -> Path:
        """Return ``path`` taken relative to the root filesystem directory."""
        return Path(os.path.normpath(os.path.join(self.source_dir, path.lstrip("/"))))

    def _templates_dir(self) -> Path:
        directory = self.cache_dir / "templates"
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    @staticmethod
    def _add_lxd_template(img: LXDImage, target_path: str, template: str,
                          properties: Mapping[str, str], when: Iterable[str]) -> None:
        img.metadata.templates[target_path] = ImageMetadataTemplate(
            template=template,
            properties=dict(properties),
            when=list(when) or list(DEFAULT_TEMPLATE_WHEN),
        )

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Apply the generator while building an LXC image."""
        self.run()

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Apply the generator while building an LXD image."""
        self.run()

    def run(self) -> None:
        """Apply the generator to a plain root filesystem."""
"""LXD image metadata."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

import yaml

from imagebuilder.definition import (
    Definition,
    TemplateError,
    get_expiry_date,
    render_template,
)

StrPath = Union[str, os.PathLike]


@dataclass
class ImageMetadataTemplate:
    """A template entry of LXD image metadata."""

    template: str
    properties: dict[str, str] = field(default_factory=dict)
    when: list[str] = field(default_factory=list)
    create_only: bool = False


@dataclass
class ImageMetadata:
    """The contents of an LXD image's metadata.yaml."""

    architecture: str = ""
    creation_date: int = 0
    expiry_date: int = 0
    properties: dict[str, str] = field(default_factory=dict)
    templates: dict[str, ImageMetadataTemplate] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the metadata in its YAML layout."""
        return {
            "architecture": self.architecture,
            "creation_date": self.creation_date,
            "expiry_date": self.expiry_date,
            "properties": dict(self.properties),
            "templates": {
                path: {
                    "when": list(entry.when),
                    "create_only": entry.create_only,
                    "template": entry.template,
                    "properties": dict(entry.properties),
                }
                for path, entry in self.templates.items()
            },
        }


class LXDImage:
    """An LXD image being assembled."""

    def __init__(self, source_dir: StrPath, target_dir: StrPath, cache_dir: StrPath,
                 definition: Definition) -> None:
        self.source_dir = Path(source_dir)
        self.target_dir = Path(target_dir)
        self.cache_dir = Path(cache_dir)
        self.definition = definition
        self.metadata = ImageMetadata()

    def _render(self, template: str) -> str:
        try:
            return render_template(template, self.definition)
        except TemplateError as exc:
            raise TemplateError(f"Failed to render template: {exc}") from exc

    def create_metadata(self) -> None:
        """Fill the metadata from the definition."""
        image = self.definition.image
        properties = self.metadata.properties

        self.metadata.architecture = image.architecture
        self.metadata.creation_date = int(time.time())
        properties["architecture"] = image.architecture_mapped or image.architecture
        properties["os"] = image.distribution
        properties["release"] = image.release
        properties["variant"] = image.variant
        properties["serial"] = image.serial
        properties["description"] = self._render(image.description)
        properties["name"] = self._render(image.name)

        expiry = get_expiry_date(datetime.now(timezone.utc), image.expiry)
        self.metadata.expiry_date = int(expiry.timestamp())

    def write_metadata_file(self) -> Path:
        """Create the metadata and write it to metadata.yaml in the cache directory."""
        self.create_metadata()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.cache_dir / "metadata.yaml"
        path.write_text(
            yaml.safe_dump(self.metadata.to_dict(), default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        return path
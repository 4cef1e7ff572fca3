"""Image definition model, template rendering and file access helpers."""

from __future__ import annotations

import calendar
import dataclasses
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Union

import jinja2

_MAX_RENDER_ROUNDS = 10
_EXPIRY_FORMAT = re.compile(r"(?:\d+(?:min|s|h|d|w|m|y))+")
_EXPIRY_PART = re.compile(r"(\d+)(min|s|h|d|w|m|y)")


class TemplateError(ValueError):
    """Raised when a template cannot be parsed or rendered."""


@dataclass
class FileTemplate:
    """Template settings attached to a generated file."""

    properties: dict[str, str] = field(default_factory=dict)
    when: list[str] = field(default_factory=list)


@dataclass
class DefinitionFile:
    """A file entry of an image definition, handled by a generator."""

    generator: str = ""
    name: str = ""
    path: str = ""
    content: str = ""
    source: str = ""
    mode: str = ""
    gid: str = ""
    uid: str = ""
    pongo: bool = False
    templated: bool = False
    template: FileTemplate = field(default_factory=FileTemplate)
    releases: list[str] = field(default_factory=list)
    architectures: list[str] = field(default_factory=list)
    variants: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)


@dataclass
class DefinitionImage:
    """Description of the image being built."""

    distribution: str = ""
    release: str = ""
    architecture: str = ""
    architecture_mapped: str = ""
    variant: str = ""
    description: str = ""
    name: str = ""
    serial: str = ""
    expiry: str = ""


@dataclass
class LXCConfig:
    """A piece of LXC configuration bound to a range of compat levels."""

    type: str = "all"
    before: int = 0
    after: int = 0
    content: str = ""
    releases: list[str] = field(default_factory=list)
    architectures: list[str] = field(default_factory=list)
    variants: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)


@dataclass
class DefinitionTargetLXC:
    """LXC specific target settings."""

    create_message: str = ""
    config: list[LXCConfig] = field(default_factory=list)


@dataclass
class DefinitionTargetLXDVM:
    """LXD virtual machine settings."""

    size: int = 0
    filesystem: str = ""


@dataclass
class DefinitionTargetLXD:
    """LXD specific target settings."""

    vm: DefinitionTargetLXDVM = field(default_factory=DefinitionTargetLXDVM)


@dataclass
class DefinitionTargets:
    """Target settings for all image kinds."""

    lxc: DefinitionTargetLXC = field(default_factory=DefinitionTargetLXC)
    lxd: DefinitionTargetLXD = field(default_factory=DefinitionTargetLXD)
    type: str = ""


@dataclass
class Definition:
    """A complete image definition."""

    image: DefinitionImage = field(default_factory=DefinitionImage)
    targets: DefinitionTargets = field(default_factory=DefinitionTargets)
    files: list[DefinitionFile] = field(default_factory=list)

    def as_context(self) -> dict[str, Any]:
        """Return the definition as nested dictionaries for template rendering."""
        return dataclasses.asdict(self)


def _capfirst(value: Any) -> str:
    text = str(value)
    return text[:1].upper() + text[1:]


_environment = jinja2.Environment(autoescape=False, keep_trailing_newline=True)
_environment.filters["capfirst"] = _capfirst


def render_template(template: str, definition: Union[Definition, Mapping[str, Any]]) -> str:
    """Render a template against a definition, resolving nested templates."""
    if isinstance(definition, Definition):
        context = definition.as_context()
    else:
        context = dict(definition)

    current = template
    for _ in range(_MAX_RENDER_ROUNDS):
        try:
            rendered = _environment.from_string(current).render(context)
        except jinja2.TemplateError as exc:
            raise TemplateError(str(exc)) from exc
        if rendered == current or ("{{" not in rendered and "{%" not in rendered):
            return rendered
        current = rendered
    return current


def update_file_access(path: Union[str, os.PathLike, int], def_file: DefinitionFile) -> None:
    """Apply the mode, group and owner requested by a definition file."""
    if def_file.mode:
        try:
            mode = int(def_file.mode, 8)
        except ValueError as exc:
            raise ValueError(f"Failed to parse file mode: {exc}") from exc
        if not 0 <= mode <= 0xFFFFFFFF:
            raise ValueError(f"Failed to parse file mode: {def_file.mode!r} out of range")
        os.chmod(path, mode)

    if def_file.gid:
        try:
            gid = int(def_file.gid)
        except ValueError as exc:
            raise ValueError(f"Failed to parse GID: {exc}") from exc
        os.chown(path, -1, gid)

    if def_file.uid:
        try:
            uid = int(def_file.uid)
        except ValueError as exc:
            raise ValueError(f"Failed to parse UID: {exc}") from exc
        os.chown(path, uid, -1)


def _add_months(moment: datetime, months: int) -> datetime:
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def get_expiry_date(start: datetime, expiry: str) -> datetime:
    """Return ``start`` moved forward by an expiry such as ``30d`` or ``1y 2m``."""
    compact = "".join(expiry.split())
    if not compact:
        return start
    if not _EXPIRY_FORMAT.fullmatch(compact):
        raise ValueError(f"Invalid expiry: {expiry!r}")

    result = start
    for amount_text, unit in _EXPIRY_PART.findall(compact):
        amount = int(amount_text)
        if unit == "s":
            result += timedelta(seconds=amount)
        elif unit == "min":
            result += timedelta(minutes=amount)
        elif unit == "h":
            result += timedelta(hours=amount)
        elif unit == "d":
            result += timedelta(days=amount)
        elif unit == "w":
            result += timedelta(weeks=amount)
        elif unit == "m":
            result = _add_months(result, amount)
        else:
            result = _add_months(result, 12 * amount)
    return result
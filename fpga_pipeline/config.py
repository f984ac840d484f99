# Copyright (c) 2022, Intrepid Control Systems, Inc.
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# 1. Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.
#
# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
# DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
# FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
# DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
# SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
# OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""
Copyright 2021 Intrepid Control Systems

Resolution of the effective build configuration

Every configurable field is resolved independently with a fixed precedence:
family/board defaults < persisted project file < per invocation overrides

"""

import re
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from .errors import ConfigError, ConfigErrorKind
from .families import BOARDS, get_family
from .utils import warning

PROJECT_FILE_NAME = "fpga_project.yaml"
PROJECT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

DEFAULT = "default"
PERSISTED = "persisted"
OVERRIDE = "override"
LAYER_RANK = {DEFAULT: 0, PERSISTED: 1, OVERRIDE: 2}

# Fields holding paths, resolved against the project root
PATH_KEYS = (
    "rtl_dir",
    "tb_dir",
    "include_dir",
    "constraints_dir",
    "sim_dir",
    "synth_dir",
    "pnr_dir",
    "bitstream_dir",
    "reports_dir",
    "file_list",
)

# Directories the container flow reaches through the project root mount
CONTAINER_PATH_KEYS = ("rtl_dir", "include_dir", "bitstream_dir")

# Static defaults, no default depends on another field
DEFAULTS = {
    "top": "top",
    "testbench": "top_tb",
    "rtl_dir": "sources/rtl",
    "tb_dir": "sources/tb",
    "include_dir": "sources/include",
    "constraints_dir": "sources/constraints",
    "sim_dir": "sim",
    "synth_dir": "backend/synth",
    "pnr_dir": "backend/pnr",
    "bitstream_dir": "backend/bitstream",
    "reports_dir": "backend/reports",
    "file_list": "sources/rtl_list.f",
    "constraint_file": "",
    "programmer": "",
    "timeout": "",
}

CONFIG_KEYS = (
    "project",
    "family",
    "board",
    "device",
    "package",
    "top",
    "testbench",
    *PATH_KEYS,
    "constraint_file",
    "programmer",
    "container_image",
    "timeout",
)


@dataclass(frozen=True)
class EffectiveConfig:
    """
    The merged configuration for a single invocation
    Passed explicitly to everything that needs it, never global
    """

    project_root: Path
    project: str
    family: str
    board: str
    device: str
    package: str
    top: str
    testbench: str
    rtl_dir: Path
    tb_dir: Path
    include_dir: Path
    constraints_dir: Path
    sim_dir: Path
    synth_dir: Path
    pnr_dir: Path
    bitstream_dir: Path
    reports_dir: Path
    file_list: Path
    constraint_file: Path = None
    programmer: str = ""
    container_image: str = ""
    timeout: float = None
    sources: dict = field(default_factory=dict, compare=False)

    def as_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "sources"}

    def source_of(self, key):
        return self.sources.get(key, DEFAULT)


def project_file(project_root):
    return Path(project_root) / PROJECT_FILE_NAME


def load_project_config(path):
    """
    Loads a persisted project configuration

    Args:
        path: The YAML project file

    Returns:
        A dict of key to string value, empty if the file does not exist

    Raises:
        ConfigError on malformed YAML, a non mapping document or unknown keys

    """
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with open(path, "r") as file:
            data = yaml.safe_load(file)
    except yaml.YAMLError as e:
        raise ConfigError(
            ConfigErrorKind.MALFORMED_PROJECT_FILE, f"{path} is not valid YAML: {e}"
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            ConfigErrorKind.MALFORMED_PROJECT_FILE, f"{path} must contain a mapping of settings"
        )
    values = {}
    for key, value in data.items():
        key = str(key)
        if isinstance(value, (dict, list)):
            raise ConfigError(
                ConfigErrorKind.MALFORMED_PROJECT_FILE,
                f"{path}: setting '{key}' must be a single value",
                key=key,
            )
        values[key] = "" if value is None else str(value)
    _check_keys(values, f"project file {path}")
    return values


def save_project_config(project_root, values):
    """
    Writes the persisted project configuration, keys in canonical order

    Args:
        project_root: Directory holding the project
        values:       Mapping of configuration keys to values

    Returns:
        The path written

    """
    _check_keys(values, "project settings")
    ordered = {key: str(values[key]) for key in CONFIG_KEYS if key in values}
    path = project_file(project_root)
    with open(path, "w") as file:
        yaml.safe_dump(ordered, file, default_flow_style=False, sort_keys=False)
    return path


def _check_keys(values, origin):
    for key in values:
        if key not in CONFIG_KEYS:
            raise ConfigError(
                ConfigErrorKind.UNKNOWN_KEY,
                f"unknown configuration key '{key}' in {origin}, valid keys are {', '.join(CONFIG_KEYS)}",
                key=key,
            )


def _match(value, choices):
    """
    Case insensitive lookup keeping the canonical spelling
    """
    for choice in choices:
        if choice.lower() == value.lower():
            return choice
    return None


class ConfigResolver:
    """
    Produces one consistent EffectiveConfig from defaults, the persisted project
    file and override arguments

    Args:
        project_root: Directory holding the project, defaults to the cwd
        project_file_path: Persisted configuration, defaults to <project_root>/fpga_project.yaml

    """

    def __init__(self, project_root=None, project_file_path=None):
        self.project_root = Path(project_root or Path.cwd()).resolve()
        if project_file_path is None:
            project_file_path = project_file(self.project_root)
        self.project_file = Path(project_file_path)

    def persisted(self):
        return load_project_config(self.project_file)

    def resolve(self, family=None, overrides=None):
        """
        Resolves the effective configuration

        Args:
            family:    Family name, wins over any other family setting
            overrides: Mapping of configuration key to string value, highest precedence

        Returns:
            An EffectiveConfig

        Raises:
            ConfigError for unknown keys, families, boards, devices or packages,
            and for invalid values

        """
        overrides = {key: "" if value is None else str(value) for key, value in (overrides or {}).items()}
        _check_keys(overrides, "overrides")
        if family is not None:
            overrides["family"] = family
        persisted = self.persisted()

        family_name = overrides.get("family") or persisted.get("family")
        if not family_name:
            raise ConfigError(
                ConfigErrorKind.MISSING_FAMILY,
                "no family selected, pass one or set 'family' in the project file",
            )
        profile = get_family(family_name)

        layers = [(PERSISTED, persisted), (OVERRIDE, overrides)]
        values = {}
        sources = {}

        def pick(key, default):
            values[key] = default
            sources[key] = DEFAULT
            for source, layer in layers:
                if key in layer:
                    values[key] = layer[key]
                    sources[key] = source

        pick("family", profile.name)
        pick("board", "")
        board = None
        if values["board"]:
            board = BOARDS.get(values["board"])
            if board is None or board.family != profile.name:
                valid = [b.name for b in BOARDS.values() if b.family == profile.name]
                raise ConfigError(
                    ConfigErrorKind.UNKNOWN_BOARD,
                    f"board '{values['board']}' is not a {profile.name} board, choose from {', '.join(valid)}",
                    key=values["board"],
                )

        pick("device", profile.default_device)
        pick("package", profile.default_package)
        package_source = sources["package"]
        if board:
            # The board part lives on the layer that selected the board, a part set on that layer or above wins
            for key in ("device", "package"):
                if LAYER_RANK[sources[key]] < LAYER_RANK[sources["board"]]:
                    values[key] = getattr(board, key)
                    sources[key] = sources["board"]
                    if key == "package":
                        package_source = DEFAULT
        pick("project", self.project_root.name)
        for key, default in DEFAULTS.items():
            pick(key, default)
        pick("container_image", profile.container_image or "")

        values["family"] = profile.name
        values["device"], values["package"] = self._check_part(
            profile, values["device"], values["package"], package_source
        )
        self._check_project(values["project"])
        timeout = self._parse_timeout(values["timeout"])
        self._check_programmer(profile, values["programmer"])

        paths = {key: self._path(values[key]) for key in PATH_KEYS}
        if profile.uses_container:
            self._check_mounted(profile, paths)
        constraint_file = self._path(values["constraint_file"]) if values["constraint_file"] else None

        return EffectiveConfig(
            project_root=self.project_root,
            project=values["project"],
            family=values["family"],
            board=values["board"],
            device=values["device"],
            package=values["package"],
            top=values["top"],
            testbench=values["testbench"],
            constraint_file=constraint_file,
            programmer=values["programmer"],
            container_image=values["container_image"],
            timeout=timeout,
            sources=sources,
            **paths,
        )

    def _path(self, value):
        return self.project_root / Path(value).expanduser()

    @staticmethod
    def _check_part(profile, device, package, package_source=OVERRIDE):
        """
        Validates a device/package pair, returning their canonical spellings
        A default package that doesn't fit a selected device is kept with a warning,
        the place and route tool has the final say
        """
        canonical_device = _match(device, profile.devices)
        if canonical_device is None:
            raise ConfigError(
                ConfigErrorKind.UNKNOWN_DEVICE,
                f"device '{device}' is not a {profile.name} device, choose from {', '.join(profile.devices)}",
                key=device,
            )
        packages = profile.packages_for(canonical_device)
        canonical_package = _match(package, packages)
        if canonical_package is not None:
            return canonical_device, canonical_package
        if package_source == DEFAULT:
            warning(
                f"WARNING: Default package {package} is not listed for {profile.name} "
                f"{canonical_device}, set one of {', '.join(packages)}"
            )
            return canonical_device, package
        raise ConfigError(
            ConfigErrorKind.UNKNOWN_PACKAGE,
            f"package '{package}' is not available for {profile.name} {canonical_device}, "
            f"choose from {', '.join(packages)}",
            key=package,
        )

    @staticmethod
    def _check_project(project):
        if not PROJECT_NAME_PATTERN.match(project):
            raise ConfigError(
                ConfigErrorKind.INVALID_VALUE,
                f"project name '{project}' may only use letters, numbers, underscore and hyphen",
                key="project",
            )

    @staticmethod
    def _parse_timeout(value):
        if value == "":
            return None
        try:
            timeout = float(value)
        except ValueError:
            timeout = -1
        if not timeout > 0:
            raise ConfigError(
                ConfigErrorKind.INVALID_VALUE,
                f"timeout must be a positive number of seconds, got '{value}'",
                key="timeout",
            )
        return timeout

    def _check_mounted(self, profile, paths):
        for key in CONTAINER_PATH_KEYS:
            path = paths[key].resolve()
            if path != self.project_root and self.project_root not in path.parents:
                raise ConfigError(
                    ConfigErrorKind.INVALID_VALUE,
                    f"{key} {path} must be inside the project root {self.project_root}, "
                    f"the {profile.name} tools only see the project directory",
                    key=key,
                )

    @staticmethod
    def _check_programmer(profile, programmer):
        if not programmer or "program" not in profile.tools:
            return
        if programmer not in profile.tools["program"]:
            raise ConfigError(
                ConfigErrorKind.INVALID_VALUE,
                f"programmer '{programmer}' is not supported for {profile.name}, "
                f"choose from {', '.join(profile.tools['program'])}",
                key="programmer",
            )

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

Discovery of the external EDA tools a pipeline shells out to

"""

import re
import shutil
from dataclasses import dataclass
from os import environ, pathsep
from pathlib import Path

from .utils import warning

ENV_PREFIX = "FPGA_PIPELINE_"
OSS_CAD_SUITE_ENV_VAR = "FPGA_PIPELINE_OSS_CAD_SUITE"
# Where the toolkit installer unpacks the OSS CAD Suite
DEFAULT_OSS_CAD_SUITE = Path.home() / "fpga_workspace" / "oss-cad-suite"


@dataclass(frozen=True)
class ToolBinding:
    """
    Resolved mapping from a logical tool name to an executable
    `path` is None when the tool was not found
    """

    name: str
    path: str = None

    @property
    def found(self):
        return self.path is not None

    def __str__(self):
        return f"{self.name} -> {self.path if self.found else 'not found'}"


def tool_env_var(name):
    """
    Gets the environment variable that can pin a tool to an explicit path
    For "nextpnr-ice40" this is FPGA_PIPELINE_NEXTPNR_ICE40
    """
    return ENV_PREFIX + re.sub(r"[^A-Za-z0-9]", "_", name).upper()


class ToolRegistry:
    """
    Resolves logical tool names to executables, once per run

    Search order is FPGA_PIPELINE_{TOOL}, the search path, then the OSS CAD Suite
    bin directory ($FPGA_PIPELINE_OSS_CAD_SUITE or ~/fpga_workspace/oss-cad-suite)
    Absence of a tool is a normal outcome, never an exception

    Args:
        search_path: Overrides the PATH to search, defaults to the process PATH
        env:         Mapping used for environment lookups, defaults to os.environ
        which:       Executable lookup function with shutil.which's signature

    """

    def __init__(self, search_path=None, env=None, which=shutil.which):
        self.env = environ if env is None else env
        self.search_path = search_path
        self.which = which
        self._bindings = {}

    def resolve(self, name):
        if name not in self._bindings:
            self._bindings[name] = ToolBinding(name, self._search(name))
        return self._bindings[name]

    def is_available(self, name):
        return self.resolve(name).found

    def resolve_first(self, candidates):
        """
        Resolves the first available tool of an ordered list of candidates

        Args:
            candidates: Tool names, most preferred first

        Returns:
            The binding of the first candidate found, else the not found binding
            of the most preferred candidate

        """
        for name in candidates:
            binding = self.resolve(name)
            if binding.found:
                return binding
        return self.resolve(candidates[0])

    def bindings(self):
        return dict(self._bindings)

    def _search(self, name):
        env_var = tool_env_var(name)
        if env_var in self.env:
            explicit = Path(self.env[env_var]).expanduser()
            if explicit.is_file():
                return str(explicit.absolute())
            warning(
                f"WARNING: {env_var} is set to {explicit}, but it does not exist. Searching PATH"
            )

        path = self.which(name, path=self.search_path)
        if path is not None:
            return str(Path(path).absolute())

        suite_bin = self._oss_cad_suite() / "bin"
        if suite_bin.is_dir():
            path = self.which(name, path=str(suite_bin))
            if path is not None:
                return str(Path(path).absolute())
        return None

    def _oss_cad_suite(self):
        if OSS_CAD_SUITE_ENV_VAR in self.env:
            return Path(self.env[OSS_CAD_SUITE_ENV_VAR]).expanduser()
        return DEFAULT_OSS_CAD_SUITE


def search_path_with(*dirs):
    """
    Builds a search path string from directories, useful for pinning a registry
    """
    return pathsep.join(str(d) for d in dirs)

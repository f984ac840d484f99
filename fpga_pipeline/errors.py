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

Error types shared by the configuration resolver, the stages and the runner

"""

from enum import Enum


class ConfigErrorKind(Enum):
    UNKNOWN_FAMILY = "unknown family"
    MISSING_FAMILY = "missing family"
    UNKNOWN_KEY = "unknown key"
    UNKNOWN_DEVICE = "unknown device"
    UNKNOWN_PACKAGE = "unknown package"
    UNKNOWN_BOARD = "unknown board"
    UNSUPPORTED_STAGE = "unsupported stage"
    INVALID_VALUE = "invalid value"
    MALFORMED_PROJECT_FILE = "malformed project file"


class StageErrorKind(Enum):
    TOOL_MISSING = "tool missing"
    PRECONDITION_UNMET = "precondition unmet"
    TOOL_EXECUTION_FAILED = "tool execution failed"
    CANCELLED = "cancelled"


class ConfigError(Exception):
    """
    Raised when an effective configuration cannot be resolved
    Always fatal, raised before any stage runs

    Args:
        kind:    The ConfigErrorKind
        message: Human readable description
        key:     The offending configuration key or value, if any

    """

    def __init__(self, kind, message, key=None):
        super().__init__(message)
        self.kind = kind
        self.key = key

    def __str__(self):
        return f"{self.kind.value}: {self.args[0]}"


class CommandFailed(Exception):
    """
    An external command exited with a non zero return code
    The captured output is kept verbatim in `output`
    """

    def __init__(self, cmd, cwd, returncode, output):
        self.cmd = cmd
        self.cwd = cwd
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"""
      command: {cmd}
      cwd:     {cwd}
      rc:      {returncode}
    """
        )


class CommandTimeout(CommandFailed):
    def __init__(self, cmd, cwd, returncode, output, timeout):
        super().__init__(cmd, cwd, returncode, output)
        self.timeout = timeout


class CommandCancelled(CommandFailed):
    pass

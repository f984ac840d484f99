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

Runs tools inside a container with the project directory mounted
Used for the Quartus flow, Quartus Prime Lite ships as a Docker image

"""

import os
from pathlib import Path, PurePosixPath

MOUNT_POINT = PurePosixPath("/build")
USB_BUS = "/dev/bus/usb"


class ContainerRuntime:
    """
    Builds container runtime command lines

    Args:
        image:       The image holding the tools, i.e. raetro/quartus:21.1
        mount_point: Where the project root appears inside the container

    """

    def __init__(self, image, mount_point=MOUNT_POINT):
        self.image = image
        self.mount_point = PurePosixPath(mount_point)

    def container_path(self, path, project_root):
        """
        Maps a host path below the project root to its path inside the container

        Raises:
            ValueError if the path is outside the project root

        """
        relative = Path(path).resolve().relative_to(Path(project_root).resolve())
        return str(self.mount_point.joinpath(*relative.parts))

    def wrap(self, runtime, project_root, tool_args, usb=False):
        """
        Wraps a tool command line so it runs in the container

        Args:
            runtime:      Path to the container runtime executable
            project_root: Host directory mounted as the container's work dir
            tool_args:    The tool command line, as seen inside the container
            usb:          Pass the USB bus through, needed for programming

        Returns:
            The full command as a list

        """
        cmd = [
            str(runtime),
            "run",
            "--rm",
            "-v",
            f"{Path(project_root).resolve()}:{self.mount_point}",
            "-w",
            str(self.mount_point),
        ]
        # Keep generated files owned by the invoking user
        if hasattr(os, "getuid"):
            cmd.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        if usb:
            cmd.extend(["--privileged", "-v", f"{USB_BUS}:{USB_BUS}"])
        cmd.append(self.image)
        cmd.extend(str(arg) for arg in tool_args)
        return cmd

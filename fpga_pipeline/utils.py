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

Utils for the fpga pipeline: console output and external command execution

"""

import inspect
import shlex
import subprocess
import threading
from pathlib import Path

from colorama import Fore, Style, init as colorama_init

from .errors import CommandCancelled, CommandFailed, CommandTimeout

colorama_init(strip=False)

FILE_DIR = Path(__file__).parent.absolute()
TEMPLATE_DIR = FILE_DIR / "templates"

default_print = print

# Time given to a tool to exit after being asked to terminate
TERMINATE_GRACE_S = 5


def run_cmd(cmd, cwd=None, silent=False, line_handler=None, blocking=True, timeout=None):
    """
    Runs the provided command, streaming its output while also capturing it
    Throws an exception if return code was non zero

    Args:
        cmd:          The command to run, a list of arguments or a string
        cwd:          The directory to execute from, set to cwd if None
        silent:       When true, does not print out what command it's running
        line_handler: Function of a string that is each line.  If not provided, just prints output
        blocking:     When false, just launches and returns
        timeout:      Seconds before the command is killed, None waits forever

    Returns:
        The captured output, stdout and stderr interleaved

    Raises:
        CommandFailed on a non zero return code
        CommandTimeout if the timeout expired
        CommandCancelled if interrupted, after terminating the command

    """
    if not cwd:
        cwd = Path.cwd()
    if isinstance(cmd, str):
        split_cmd = shlex.split(cmd)
    else:
        split_cmd = [str(arg) for arg in cmd]
    cmd_string = shlex.join(split_cmd)

    if not silent:
        print()
        print("=============================================================")
        print("Running command:")
        print(cmd_string)
        print(f"From directory {cwd}")
    if not blocking:
        subprocess.Popen(
            split_cmd,
            cwd=cwd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            start_new_session=True,
        )
        return ""
    try:
        process = subprocess.Popen(
            split_cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
        )
    except (FileNotFoundError, OSError) as e:
        err(f"Command was {cmd_string}")
        raise e

    expired = threading.Event()
    timer = None
    if timeout:

        def expire():
            expired.set()
            process.kill()

        timer = threading.Timer(timeout, expire)
        timer.start()

    lines = []
    try:
        for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            lines.append(line)
            if line_handler:
                # Specific runners can handle fancy printing with colors and stuff
                line_handler(line)
            else:
                print(line)
        rc = process.wait()
    except KeyboardInterrupt:
        _terminate(process)
        raise CommandCancelled(cmd_string, cwd, process.returncode, "\n".join(lines))
    finally:
        if timer:
            timer.cancel()
        process.stdout.close()

    output = "\n".join(lines)
    if expired.is_set():
        raise CommandTimeout(cmd_string, cwd, rc, output, timeout)
    if rc != 0:
        raise CommandFailed(cmd_string, cwd, rc, output)
    if not silent:
        print("=============================================================")
    return output


def _terminate(process):
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def tool_line_handler(line):
    """
    Colors a line of EDA tool output by its severity prefix
    Yosys, nextpnr and Quartus all prefix their diagnostics similarly
    """
    upper = line.lstrip().upper()
    if upper.startswith("ERROR"):
        err(line)
    elif upper.startswith("CRITICAL WARNING"):
        critical_warning(line)
    elif upper.startswith("WARNING"):
        warning(line)
    else:
        info(line)


def err(*args, **kwargs):
    print(Fore.RED + Style.BRIGHT, end="")
    print(*args, **kwargs)
    print(Fore.RESET + Style.RESET_ALL, end="")


def critical_warning(*args, **kwargs):
    print(Fore.MAGENTA + Style.BRIGHT, end="")
    print(*args, **kwargs)
    print(Fore.RESET + Style.RESET_ALL, end="")


def warning(*args, **kwargs):
    print(Fore.YELLOW, end="")
    print(*args, **kwargs)
    print(Fore.RESET + Style.RESET_ALL, end="")


def info(*args, **kwargs):
    # In case we want info colors later?
    print(Fore.RESET, end="")
    print(*args, **kwargs)
    print(Fore.RESET + Style.RESET_ALL, end="")


def success(*args, **kwargs):
    print(Fore.GREEN, end="")
    print(*args, **kwargs)
    print(Fore.RESET + Style.RESET_ALL, end="")


def print(*args, **kwargs):
    kwargs["flush"] = True
    default_print(*args, **kwargs)


def caller_dir():
    """
    Returns the directory of the file that called into the **current context**
    In another words, not what called this function, but what called the function
    that called this one
    Useful to keep using relative directories while using different files

    Returns:
        A Path to the directory that called the function calling this one

    """
    # Use the second one up since calling this will invoke another stack frame
    frame = inspect.stack()[2]
    filename = frame[0].f_code.co_filename
    return Path(filename).resolve().parent

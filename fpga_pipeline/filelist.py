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

Generates and reads the project file list (rtl_list.f)
The file list is regenerated on demand, never maintained by hand

"""

from collections import namedtuple
from datetime import datetime
from pathlib import Path

RTL_SECTION = "# RTL Source Files"
TB_SECTION = "# Testbench Files"
HDL_EXTENSIONS = (".v", ".sv")

FileList = namedtuple("FileList", ["rtl", "testbench"])


def collect_sources(directory):
    """
    Finds HDL sources below a directory

    Args:
        directory: Directory to search recursively, may not exist

    Returns:
        Sorted list of absolute Paths

    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    files = [
        path.resolve()
        for path in directory.rglob("*")
        if path.is_file() and path.suffix in HDL_EXTENSIONS
    ]
    return sorted(files)


def generate_filelist(cfg):
    """
    Regenerates the file list of a configuration from its RTL and testbench dirs
    A list that already holds the same entries is left untouched

    Args:
        cfg: The EffectiveConfig

    Returns:
        The FileList written

    """
    rtl = collect_sources(cfg.rtl_dir)
    testbench = collect_sources(cfg.tb_dir)
    path = Path(cfg.file_list)
    files = FileList(rtl, testbench)
    if path.is_file() and read_filelist(path) == files:
        return files
    lines = [
        "# RTL and Testbench File List",
        "# Generated by fpga-pipeline update-list",
        f"# Date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"# Project: {cfg.project}",
        "",
        RTL_SECTION,
        *[str(path) for path in rtl],
        "",
        TB_SECTION,
        *[str(path) for path in testbench],
        "",
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines))
    return files


def read_filelist(path):
    """
    Reads a file list written by generate_filelist
    Entries before any section header count as RTL

    Args:
        path: The file list

    Returns:
        A FileList of Paths

    """
    rtl = []
    testbench = []
    current = rtl
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if line == RTL_SECTION:
            current = rtl
        elif line == TB_SECTION:
            current = testbench
        elif line and not line.startswith("#"):
            current.append(Path(line))
    return FileList(rtl, testbench)

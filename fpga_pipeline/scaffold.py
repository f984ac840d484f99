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

Creates new FPGA project directories and cleans generated files

"""

import shutil
from datetime import datetime
from pathlib import Path
from string import Template

from .config import PROJECT_NAME_PATTERN, ConfigResolver, save_project_config
from .errors import ConfigError, ConfigErrorKind
from .families import get_family
from .filelist import generate_filelist
from .utils import TEMPLATE_DIR, info, success

SOURCE_DIRS = ("rtl_dir", "tb_dir", "include_dir", "constraints_dir")
OUTPUT_DIRS = ("sim_dir", "synth_dir", "pnr_dir", "bitstream_dir", "reports_dir")
# Directories created on top of the configured ones, relative to the project root
EXTRA_DIRS = ("sim/waves", "sim/logs")
# Generated by Quartus in the project root
QUARTUS_DIRS = ("db", "incremental_db")

EXAMPLE_TOP = "adder"
EXAMPLE_TESTBENCH = "adder_tb"


def render(template_name, **values):
    text = (TEMPLATE_DIR / template_name).read_text()
    return Template(text).substitute(**values)


def create_project(parent, name, family, board=None, example=False, force=False):
    """
    Creates a new project directory with the standard layout

    Args:
        parent:  Directory to create the project in
        name:    Project name, letters, numbers, underscore and hyphen only
        family:  FPGA family name
        board:   Optional board preset name
        example: Also write the example adder design, testbench and constraints
        force:   Allow creating into an existing directory

    Returns:
        The EffectiveConfig of the new project

    Raises:
        ConfigError for invalid names, families or boards, or if the
        directory exists and force is not set

    """
    if not PROJECT_NAME_PATTERN.match(name):
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"invalid project name '{name}', use only letters, numbers, underscore and hyphen",
            key="project",
        )
    profile = get_family(family)
    root = Path(parent) / name
    if root.exists() and not force:
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"directory {root} already exists, provide --force to reuse it",
            key="project",
        )

    overrides = {"project": name}
    if board:
        overrides["board"] = board
    if example:
        overrides["top"] = EXAMPLE_TOP
        overrides["testbench"] = EXAMPLE_TESTBENCH
    # Validate everything before touching the file system
    cfg = ConfigResolver(root, project_file_path=root / ".missing").resolve(family, overrides)

    info(f"Creating project {name} in {root}")
    root.mkdir(parents=True, exist_ok=True)
    for key in SOURCE_DIRS + OUTPUT_DIRS:
        _make_kept_dir(getattr(cfg, key))
    for relative in EXTRA_DIRS:
        _make_kept_dir(root / relative)

    (root / ".gitignore").write_text(render("gitignore.txt"))
    settings = {"project": name, "family": profile.name}
    # A board carries its own part
    if board:
        settings["board"] = board
    else:
        settings["device"] = cfg.device
        settings["package"] = cfg.package
    settings["top"] = cfg.top
    settings["testbench"] = cfg.testbench
    save_project_config(root, settings)

    if example:
        _write_example(cfg)
    files = generate_filelist(cfg)
    if profile.uses_container:
        write_quartus_project(cfg, files.rtl)

    success(f"Project {name} created")
    return cfg


def _make_kept_dir(path):
    path.mkdir(parents=True, exist_ok=True)
    (path / ".gitkeep").touch()


def _write_example(cfg):
    waveform = Path(cfg.sim_dir).relative_to(cfg.project_root) / "waves" / f"{EXAMPLE_TESTBENCH}.vcd"
    (cfg.rtl_dir / "adder.v").write_text(render("adder.v", project=cfg.project))
    (cfg.tb_dir / "adder_tb.v").write_text(render("adder_tb.v", waveform=waveform.as_posix()))
    if cfg.family == "ice40":
        (cfg.constraints_dir / "adder.pcf").write_text(render("adder.pcf"))
    info("Example adder design written")


def write_quartus_project(cfg, rtl_files):
    """
    Writes the Quartus project and settings files for a project

    Args:
        cfg:       The EffectiveConfig
        rtl_files: RTL sources to assign, absolute Paths below the project root

    """
    profile = get_family(cfg.family)
    root = Path(cfg.project_root)
    sources = []
    for path in rtl_files:
        kind = "SYSTEMVERILOG_FILE" if path.suffix == ".sv" else "VERILOG_FILE"
        sources.append(f"set_global_assignment -name {kind} {path.relative_to(root).as_posix()}")
    (root / f"{cfg.project}.qpf").write_text(
        render("project.qpf", project=cfg.project, date=f"{datetime.now():%H:%M:%S %B %d, %Y}")
    )
    (root / f"{cfg.project}.qsf").write_text(
        render(
            "project.qsf",
            project=cfg.project,
            quartus_family=profile.device_families[cfg.device],
            device=cfg.device,
            top=cfg.top,
            output_dir=Path(cfg.bitstream_dir).relative_to(root).as_posix(),
            sources="\n".join(sources),
        )
    )


def clean(cfg):
    """
    Removes generated files from the stage output directories
    Directories and .gitkeep files are kept

    Returns:
        List of removed paths

    """
    removed = []
    for key in OUTPUT_DIRS:
        directory = Path(getattr(cfg, key))
        if not directory.is_dir():
            continue
        for path in sorted(directory.rglob("*")):
            if path.is_file() and path.name != ".gitkeep":
                path.unlink()
                removed.append(path)
    if get_family(cfg.family).uses_container:
        for name in QUARTUS_DIRS:
            directory = Path(cfg.project_root) / name
            if directory.is_dir():
                shutil.rmtree(directory)
                removed.append(directory)
    return removed

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

FPGA family (toolchain) definitions and development board presets

To add a family, add a FamilyProfile entry to FAMILIES.  Every stage the family
supports needs a tool entry, and every artifact a supported stage reads or
writes needs a path template.  Templates are formatted with the fields of an
EffectiveConfig, directories are absolute.

To add a board, add a Board entry to BOARDS with a device/package pair from its
family.

"""

from dataclasses import dataclass, field
from types import MappingProxyType

from .errors import ConfigError, ConfigErrorKind

STAGE_NAMES = ("simulate", "synthesize", "place_route", "timing", "bitstream", "program")

# Artifacts every family shares, before family specific additions
COMMON_ARTIFACTS = {
    "file_list": "{file_list}",
    "sim_binary": "{sim_dir}/{testbench}.vvp",
    "sim_log": "{sim_dir}/logs/{testbench}.log",
    "waveform": "{sim_dir}/waves/{testbench}.vcd",
    "netlist": "{synth_dir}/{project}_{family}.json",
    "synth_report": "{reports_dir}/{project}_{family}_synth.log",
    "pnr_report": "{reports_dir}/{project}_{family}_pnr.json",
}


@dataclass(frozen=True)
class FamilyProfile:
    """
    One FPGA vendor toolchain, immutable once defined

    Args:
        name:                 Unique identifier, also the CLI shortcut
        description:          One line description
        default_device:       Device used when nothing else selects one
        default_package:      Package used when nothing else selects one
        devices:              Device name to tuple of valid packages
        stages:               Supported stage names, in flow order
        tools:                Stage name to candidate executables, most preferred first
        artifacts:            Artifact name to path template
        all_stages:           Stages run by the `all` composite command
        synth_command:        Yosys synthesis command for this architecture
        pnr_output_flag:      nextpnr flag naming the placed design output
        constraint_flag:      nextpnr flag naming the pin constraint file
        unconstrained_flag:   nextpnr flag allowing auto assigned pins
        loader_board:         openFPGALoader board id used when no board is selected
        container_image:      Image for families routed through a container runtime

    """

    name: str
    description: str
    default_device: str
    default_package: str
    devices: dict
    stages: tuple
    tools: dict
    artifacts: dict
    all_stages: tuple
    synth_command: str = None
    pnr_output_flag: str = None
    constraint_flag: str = None
    unconstrained_flag: str = None
    loader_board: str = None
    container_image: str = None
    device_families: dict = field(default_factory=dict)

    def __post_init__(self):
        for stage in self.tools:
            if stage not in self.stages:
                raise ValueError(f"{self.name}: tool declared for unsupported stage {stage}")
        for stage in self.stages:
            if stage not in STAGE_NAMES:
                raise ValueError(f"{self.name}: unknown stage {stage}")
            if not self.tools.get(stage):
                raise ValueError(f"{self.name}: stage {stage} has no tool")
        for stage in self.all_stages:
            if stage not in self.stages:
                raise ValueError(f"{self.name}: `all` runs unsupported stage {stage}")
        if self.default_package not in self.devices.get(self.default_device, ()):
            raise ValueError(f"{self.name}: default device/package pair is not valid")
        # Freeze the tables
        for name in ("devices", "tools", "artifacts", "device_families"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @property
    def required_tools(self):
        """
        Preferred tool of every supported stage, in stage order, no duplicates
        """
        ret = []
        for stage in self.stages:
            tool = self.tools[stage][0]
            if tool not in ret:
                ret.append(tool)
        return ret

    @property
    def uses_container(self):
        return self.container_image is not None

    def packages_for(self, device):
        return self.devices.get(device, ())


@dataclass(frozen=True)
class Board:
    name: str
    family: str
    device: str
    package: str
    loader_board: str = None
    description: str = ""


ICE40_DEVICES = {
    "lp384": ("qn32", "cm36", "cm49"),
    "lp1k": ("swg16tr", "cm36", "cm49", "cm81", "cb81", "qn84", "cm121", "cb121"),
    "lp4k": ("cm81", "cm121", "cm225"),
    "lp8k": ("cm81", "cm121", "cm225"),
    "hx1k": ("vq100", "cb132", "tq144"),
    "hx4k": ("cb132", "tq144", "bg121"),
    "hx8k": ("cm225", "cb132", "bg121", "ct256", "tq144"),
    "up3k": ("sg48", "uwg30"),
    "up5k": ("sg48", "uwg30"),
    "u4k": ("sg48",),
}

_ECP5_SMALL = ("CABGA256", "CSFBGA285", "CABGA381")
_ECP5_MEDIUM = _ECP5_SMALL + ("CABGA554",)
_ECP5_LARGE = _ECP5_MEDIUM + ("CABGA756",)
ECP5_DEVICES = {
    "12k": _ECP5_SMALL,
    "25k": _ECP5_SMALL,
    "45k": _ECP5_MEDIUM,
    "85k": _ECP5_LARGE,
    "um-25k": _ECP5_SMALL,
    "um-45k": _ECP5_MEDIUM,
    "um-85k": _ECP5_LARGE,
    "um5g-25k": _ECP5_SMALL,
    "um5g-45k": _ECP5_MEDIUM,
    "um5g-85k": _ECP5_LARGE,
}

# Quartus part numbers encode the package, so there is one package per device
QUARTUS_DEVICES = {
    "10M08SAU169C8GES": ("U169",),
    "10M50DAF484C7G": ("F484",),
    "EP4CE115F29C7N": ("F780",),
    "5CSXFC6D6F31C6N": ("F31",),
}
QUARTUS_DEVICE_FAMILIES = {
    "10M08SAU169C8GES": "MAX 10",
    "10M50DAF484C7G": "MAX 10",
    "EP4CE115F29C7N": "Cyclone IV E",
    "5CSXFC6D6F31C6N": "Cyclone V",
}
QUARTUS_IMAGE = "raetro/quartus:21.1"

FAMILIES = {
    "ice40": FamilyProfile(
        name="ice40",
        description="Lattice iCE40 (Yosys, nextpnr-ice40, IceStorm)",
        default_device="up5k",
        default_package="sg48",
        devices=ICE40_DEVICES,
        stages=STAGE_NAMES,
        tools={
            "simulate": ("iverilog",),
            "synthesize": ("yosys",),
            "place_route": ("nextpnr-ice40",),
            "timing": ("icetime",),
            "bitstream": ("icepack",),
            "program": ("iceprog", "openFPGALoader"),
        },
        artifacts={
            **COMMON_ARTIFACTS,
            "constraints": "{constraints_dir}/{top}.pcf",
            "placed": "{pnr_dir}/{project}_{family}.asc",
            "timing_report": "{reports_dir}/{project}_{family}_timing.rpt",
            "bitstream": "{bitstream_dir}/{project}_{family}.bin",
        },
        all_stages=("synthesize", "place_route", "timing", "bitstream"),
        synth_command="synth_ice40",
        pnr_output_flag="--asc",
        constraint_flag="--pcf",
        unconstrained_flag="--pcf-allow-unconstrained",
        loader_board="ice40_generic",
    ),
    "ecp5": FamilyProfile(
        name="ecp5",
        description="Lattice ECP5 (Yosys, nextpnr-ecp5, Project Trellis)",
        default_device="25k",
        default_package="CABGA256",
        devices=ECP5_DEVICES,
        stages=("simulate", "synthesize", "place_route", "bitstream", "program"),
        tools={
            "simulate": ("iverilog",),
            "synthesize": ("yosys",),
            "place_route": ("nextpnr-ecp5",),
            "bitstream": ("ecppack",),
            "program": ("openFPGALoader",),
        },
        artifacts={
            **COMMON_ARTIFACTS,
            "constraints": "{constraints_dir}/{top}.lpf",
            "placed": "{pnr_dir}/{project}_{family}.config",
            "bitstream": "{bitstream_dir}/{project}_{family}.bit",
        },
        all_stages=("synthesize", "place_route", "bitstream"),
        synth_command="synth_ecp5",
        pnr_output_flag="--textcfg",
        constraint_flag="--lpf",
        unconstrained_flag="--lpf-allow-unconstrained",
    ),
    "quartus": FamilyProfile(
        name="quartus",
        description="Intel MAX 10 / Cyclone (Quartus Prime Lite in Docker)",
        default_device="10M08SAU169C8GES",
        default_package="U169",
        devices=QUARTUS_DEVICES,
        stages=STAGE_NAMES,
        tools={
            "simulate": ("iverilog",),
            "synthesize": ("docker",),
            "place_route": ("docker",),
            "timing": ("docker",),
            "bitstream": ("docker",),
            "program": ("docker",),
        },
        # Quartus writes every stage's output to PROJECT_OUTPUT_DIRECTORY,
        # which new projects point at the bitstream directory
        artifacts={
            "file_list": "{file_list}",
            "sim_binary": "{sim_dir}/{testbench}.vvp",
            "sim_log": "{sim_dir}/logs/{testbench}.log",
            "waveform": "{sim_dir}/waves/{testbench}.vcd",
            "project_settings": "{project_root}/{project}.qsf",
            "netlist": "{bitstream_dir}/{project}.map.summary",
            "synth_report": "{bitstream_dir}/{project}.map.rpt",
            "placed": "{bitstream_dir}/{project}.fit.summary",
            "pnr_report": "{bitstream_dir}/{project}.fit.rpt",
            "timing_report": "{bitstream_dir}/{project}.sta.rpt",
            "bitstream": "{bitstream_dir}/{project}.sof",
        },
        all_stages=("synthesize", "place_route", "timing", "bitstream"),
        container_image=QUARTUS_IMAGE,
        device_families=QUARTUS_DEVICE_FAMILIES,
    ),
}

BOARDS = {
    board.name: board
    for board in (
        Board("icebreaker", "ice40", "up5k", "sg48", "icebreaker", "1BitSquared iCEBreaker"),
        Board("icestick", "ice40", "hx1k", "tq144", "ice40_generic", "Lattice iCEstick"),
        Board("hx8k-breakout", "ice40", "hx8k", "ct256", "ice40_generic", "iCE40-HX8K breakout"),
        Board("ulx3s", "ecp5", "85k", "CABGA381", "ulx3s", "Radiona ULX3S 85F"),
        Board("orangecrab", "ecp5", "25k", "CSFBGA285", "orangeCrab", "OrangeCrab r0.2"),
        Board("tei0010", "quartus", "10M08SAU169C8GES", "U169", None, "Trenz TEI0010"),
        Board("de10-lite", "quartus", "10M50DAF484C7G", "F484", None, "Terasic DE10-Lite"),
        Board("de2-115", "quartus", "EP4CE115F29C7N", "F780", None, "Terasic DE2-115"),
        Board("de10-standard", "quartus", "5CSXFC6D6F31C6N", "F31", None, "Terasic DE10-Standard"),
    )
}


def get_family(name):
    """
    Looks up a family profile

    Raises:
        ConfigError(UNKNOWN_FAMILY) if the family is not defined

    """
    if name not in FAMILIES:
        raise ConfigError(
            ConfigErrorKind.UNKNOWN_FAMILY,
            f"family '{name}' is not defined, choose from {', '.join(FAMILIES)}",
            key=name,
        )
    return FAMILIES[name]


def boards_for(family):
    return [board for board in BOARDS.values() if board.family == family]

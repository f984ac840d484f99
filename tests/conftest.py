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
Shared fixtures: a recording stand in for run_cmd, a fake executable lookup
and a small ice40 project on disk

"""

from pathlib import Path

import pytest

from fpga_pipeline.config import ConfigResolver, save_project_config
from fpga_pipeline.errors import CommandCancelled, CommandFailed, CommandTimeout
from fpga_pipeline.filelist import generate_filelist
from fpga_pipeline.tools import ToolRegistry

TOOL_DIR = "/opt/fpga/bin"

BLINKY = """module blinky(input clk, output led);
    reg [23:0] count = 0;
    always @(posedge clk) count <= count + 1;
    assign led = count[23];
endmodule
"""

BLINKY_TB = """module blinky_tb;
    reg clk = 0;
    wire led;
    blinky dut(.clk(clk), .led(led));
    always #5 clk = ~clk;
    initial #100 $finish;
endmodule
"""


def touch(path):
    path = Path(path.strip('"'))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("generated\n")


def _after(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def _yosys(cmd):
    touch(_after(cmd, "-l"))
    script = _after(cmd, "-p")
    touch(script.split("-json ", 1)[1])


def _nextpnr(output_flag):
    def effect(cmd):
        touch(_after(cmd, output_flag))
        touch(_after(cmd, "--report"))

    return effect


# What each tool writes, so downstream stages find their inputs
TOOL_EFFECTS = {
    "iverilog": lambda cmd: touch(_after(cmd, "-o")),
    "yosys": _yosys,
    "nextpnr-ice40": _nextpnr("--asc"),
    "nextpnr-ecp5": _nextpnr("--textcfg"),
    "icetime": lambda cmd: touch(_after(cmd, "-mtr")),
    "icepack": lambda cmd: touch(cmd[-1]),
    "ecppack": lambda cmd: touch(cmd[-1]),
}


class RecordingExecutor:
    """
    Stands in for run_cmd: records every invocation and writes the files the
    real tool would write

    Attributes:
        calls:    (command, cwd) pairs in call order
        failures: Tool name to return code, those tools fail instead
        effects:  Tool name to function of the command, replaces TOOL_EFFECTS

    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.effects = dict(TOOL_EFFECTS)
        self.timeouts = {}
        self.cancel = set()

    def __call__(self, cmd, cwd=None, line_handler=None, timeout=None, **kwargs):
        cmd = [str(arg) for arg in cmd]
        self.calls.append((cmd, cwd))
        tool = Path(cmd[0]).name
        output = f"{tool} output"
        if tool in self.cancel:
            raise CommandCancelled(" ".join(cmd), cwd, -2, output)
        if tool in self.timeouts:
            raise CommandTimeout(" ".join(cmd), cwd, -9, output, self.timeouts[tool])
        if tool in self.failures:
            raise CommandFailed(" ".join(cmd), cwd, self.failures[tool], f"ERROR: {tool} failed")
        effect = self.effects.get(tool)
        if effect is not None:
            effect(cmd)
        if line_handler:
            line_handler(output)
        return output

    @property
    def tools(self):
        return [Path(cmd[0]).name for cmd, _ in self.calls]

    def command_of(self, tool):
        for cmd, _ in self.calls:
            if Path(cmd[0]).name == tool:
                return cmd
        return None


class FakeWhich:
    """
    shutil.which stand in knowing only the given tools, all under TOOL_DIR
    """

    def __init__(self, tools):
        self.tools = set(tools)
        self.lookups = []

    def __call__(self, name, path=None):
        self.lookups.append(name)
        if name in self.tools:
            return f"{TOOL_DIR}/{name}"
        return None


ALL_TOOLS = (
    "iverilog",
    "vvp",
    "yosys",
    "nextpnr-ice40",
    "nextpnr-ecp5",
    "icetime",
    "icepack",
    "ecppack",
    "iceprog",
    "openFPGALoader",
    "docker",
    "gtkwave",
)


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def make_registry(tmp_path):
    """
    Creates registries that only find the given tools
    The OSS CAD Suite location points into tmp_path so the host install is never used
    """

    def make(*tools, env=None):
        env = dict(env or {})
        env.setdefault("FPGA_PIPELINE_OSS_CAD_SUITE", str(tmp_path / "no-oss-cad-suite"))
        return ToolRegistry(env=env, which=FakeWhich(tools))

    return make


@pytest.fixture
def registry(make_registry):
    return make_registry(*ALL_TOOLS)


@pytest.fixture
def project(tmp_path):
    """
    An ice40 project named blinky with one RTL file and one testbench
    """
    root = tmp_path / "blinky"
    (root / "sources/rtl").mkdir(parents=True)
    (root / "sources/tb").mkdir(parents=True)
    (root / "sources/rtl/blinky.v").write_text(BLINKY)
    (root / "sources/tb/blinky_tb.v").write_text(BLINKY_TB)
    save_project_config(root, {"family": "ice40", "top": "blinky", "testbench": "blinky_tb"})
    return root


@pytest.fixture
def make_cfg(project):
    """
    Resolves the project's configuration and refreshes its file list
    """

    def make(family=None, **overrides):
        cfg = ConfigResolver(project).resolve(family, overrides)
        generate_filelist(cfg)
        return cfg

    return make


@pytest.fixture
def cfg(make_cfg):
    return make_cfg()

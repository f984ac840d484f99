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

Pipeline stages, each wrapping one external tool invocation

A stage goes Pending -> Ready -> Running -> Succeeded | Failed | Cancelled, or
Pending -> Skipped when an input artifact or its tool is missing.  Stages only
write inside the directories of the artifacts they produce, so re-running one
never touches another stage's outputs.  Tool failures are never retried, the
same inputs give the same result.

"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .artifacts import ArtifactStore
from .container import ContainerRuntime
from .errors import (
    CommandCancelled,
    CommandFailed,
    CommandTimeout,
    ConfigError,
    ConfigErrorKind,
    StageErrorKind,
)
from .families import BOARDS, STAGE_NAMES
from .filelist import read_filelist
from .utils import run_cmd, tool_line_handler, warning

STAGE_ALIASES = {
    "sim": "simulate",
    "synth": "synthesize",
    "pnr": "place_route",
    "placeRoute": "place_route",
    "place-route": "place_route",
    "prog": "program",
}

# Artifacts each stage reads and writes, filtered by what the family declares
STAGE_IO = {
    "simulate": (("file_list",), ("sim_binary", "sim_log", "waveform")),
    "synthesize": (("file_list", "project_settings"), ("netlist", "synth_report")),
    "place_route": (("netlist", "constraints"), ("placed", "pnr_report")),
    "timing": (("placed",), ("timing_report",)),
    "bitstream": (("placed",), ("bitstream",)),
    "program": (("bitstream",), ()),
}

# The 4k parts are 8k dies, icetime only knows the die
ICETIME_DEVICES = {"lp4k": "lp8k", "hx4k": "hx8k"}

QUARTUS_TOOLS = {
    "synthesize": "quartus_map",
    "place_route": "quartus_fit",
    "timing": "quartus_sta",
    "bitstream": "quartus_asm",
    "program": "quartus_pgm",
}


class StageStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Precondition:
    ready: bool
    reason: str = ""
    error: StageErrorKind = None
    artifact: str = None
    producer: str = None
    tool: str = None


@dataclass
class StageResult:
    stage: str
    status: StageStatus
    output: str = ""
    produced: list = field(default_factory=list)
    reason: str = ""
    error: StageErrorKind = None
    commands: list = field(default_factory=list)

    @property
    def succeeded(self):
        return self.status is StageStatus.SUCCEEDED


def canonical_stage_name(name):
    """
    Maps CLI short names and alternate spellings to stage names

    Raises:
        ConfigError(UNSUPPORTED_STAGE) for names that are not stages

    """
    name = STAGE_ALIASES.get(name, name)
    if name not in STAGE_NAMES:
        raise ConfigError(
            ConfigErrorKind.UNSUPPORTED_STAGE,
            f"'{name}' is not a stage, choose from {', '.join(STAGE_NAMES)}",
            key=name,
        )
    return name


def _yosys_quote(value):
    value = str(value)
    if any(c.isspace() for c in value):
        return '"' + value + '"'
    return value


class PipelineStage:
    """
    One unit of the FPGA flow

    Args:
        profile:      The FamilyProfile the stage builds for
        store:        ArtifactStore locating inputs and outputs
        executor:     Function running a command, with run_cmd's signature
        line_handler: Function of each line of tool output

    """

    name = None
    # Tools shipped alongside the required tool that the stage also calls
    companion_tools = ()

    def __init__(self, profile, store=None, executor=run_cmd, line_handler=tool_line_handler):
        self.profile = profile
        self.store = ArtifactStore() if store is None else store
        self.executor = executor
        self.line_handler = line_handler
        self.status = StageStatus.PENDING
        self.binding = None
        self.companions = {}

    def __repr__(self):
        return f"<{type(self).__name__} {self.name} {self.status.value}>"

    def consumes(self, cfg):
        return [name for name in STAGE_IO[self.name][0] if self.store.declares(name, cfg)]

    def produces(self, cfg):
        return [name for name in STAGE_IO[self.name][1] if self.store.declares(name, cfg)]

    def tool_candidates(self, cfg):
        return self.profile.tools[self.name]

    def precondition(self, cfg, store, registry):
        """
        Checks whether the stage can run

        Args:
            cfg:      The EffectiveConfig
            store:    The ArtifactStore
            registry: The ToolRegistry of this run

        Returns:
            A Precondition, ready or naming the missing artifact or tool

        """
        self.store = store
        for name in self.consumes(cfg):
            artifact = store.artifact(name, cfg)
            if artifact.optional or artifact.exists():
                continue
            return self._skip(
                f"missing {name} {artifact.path}, {store.hint_for(name)}",
                StageErrorKind.PRECONDITION_UNMET,
                artifact=name,
                producer=artifact.producer,
            )
        reason = self.check_inputs(cfg)
        if reason:
            return self._skip(reason, StageErrorKind.PRECONDITION_UNMET)

        candidates = self.tool_candidates(cfg)
        binding = registry.resolve_first(candidates)
        if not binding.found:
            return self._skip(
                f"required tool {' or '.join(candidates)} not found, install it or add it to PATH",
                StageErrorKind.TOOL_MISSING,
                tool=candidates[0],
            )
        if binding.name != candidates[0]:
            warning(f"WARNING: {candidates[0]} not found, falling back to {binding.name}")
        for companion in self.companion_tools:
            companion_binding = registry.resolve(companion)
            if not companion_binding.found:
                return self._skip(
                    f"required tool {companion} not found, install it or add it to PATH",
                    StageErrorKind.TOOL_MISSING,
                    tool=companion,
                )
            self.companions[companion] = companion_binding.path

        self.binding = binding
        self.status = StageStatus.READY
        return Precondition(True, tool=binding.name)

    def _skip(self, reason, error, artifact=None, producer=None, tool=None):
        self.status = StageStatus.SKIPPED
        return Precondition(False, reason, error, artifact, producer, tool)

    def check_inputs(self, cfg):
        """
        Stage specific input checks beyond artifact existence

        Returns:
            A reason string if the stage cannot run, else None

        """
        return None

    def commands(self, cfg):
        """
        Returns:
            List of (command, cwd) pairs run in order

        """
        raise NotImplementedError

    def record(self, cfg, output):
        """
        Hook run after the commands with their combined output, whatever the outcome
        """

    def execute(self, cfg):
        """
        Runs the stage's tool, only valid once precondition() returned ready

        Args:
            cfg: The EffectiveConfig

        Returns:
            A StageResult, failures carry the tool's output verbatim

        """
        if self.status is not StageStatus.READY:
            raise RuntimeError(f"stage {self.name} executed before its precondition was met")
        self.status = StageStatus.RUNNING
        for name in self.produces(cfg):
            self.store.path_for(name, cfg).parent.mkdir(parents=True, exist_ok=True)

        outputs = []
        commands = []
        status = StageStatus.SUCCEEDED
        reason = ""
        error = None
        try:
            for cmd, cwd in self.commands(cfg):
                commands.append([str(arg) for arg in cmd])
                outputs.append(
                    self.executor(
                        cmd, cwd=cwd, line_handler=self.line_handler, timeout=cfg.timeout
                    )
                )
        except CommandCancelled as e:
            outputs.append(e.output)
            status = StageStatus.CANCELLED
            reason = f"{self.binding.name} was interrupted"
            error = StageErrorKind.CANCELLED
        except CommandTimeout as e:
            outputs.append(e.output)
            status = StageStatus.FAILED
            reason = f"{Path(commands[-1][0]).name} timed out after {e.timeout:g}s"
            error = StageErrorKind.TOOL_EXECUTION_FAILED
        except CommandFailed as e:
            outputs.append(e.output)
            status = StageStatus.FAILED
            reason = f"{Path(commands[-1][0]).name} exited with code {e.returncode}"
            error = StageErrorKind.TOOL_EXECUTION_FAILED
        except OSError as e:
            status = StageStatus.FAILED
            reason = f"could not run {self.binding.name}: {e}"
            error = StageErrorKind.TOOL_EXECUTION_FAILED

        output = "\n".join(text for text in outputs if text)
        self.record(cfg, output)

        produced = []
        if status is StageStatus.SUCCEEDED:
            for name in self.produces(cfg):
                artifact = self.store.artifact(name, cfg)
                if artifact.exists():
                    produced.append(artifact.path)
                elif not artifact.optional:
                    status = StageStatus.FAILED
                    reason = f"{self.binding.name} finished but did not produce {name} {artifact.path}"
                    error = StageErrorKind.TOOL_EXECUTION_FAILED
                    produced = []
                    break

        self.status = status
        return StageResult(
            stage=self.name,
            status=status,
            output=output,
            produced=produced,
            reason=reason,
            error=error,
            commands=commands,
        )


class SimulateStage(PipelineStage):
    """
    Compiles RTL and testbench with Icarus Verilog, then runs the testbench with vvp
    The testbench runs from the project root so relative $dumpfile paths work
    """

    name = "simulate"
    companion_tools = ("vvp",)

    def check_inputs(self, cfg):
        files = read_filelist(self.store.path_for("file_list", cfg))
        if not files.testbench:
            return f"file list {cfg.file_list} has no testbench sources, add some to {cfg.tb_dir}"
        return None

    def commands(self, cfg):
        files = read_filelist(self.store.path_for("file_list", cfg))
        sim_binary = self.store.path_for("sim_binary", cfg)
        compile_cmd = [self.binding.path, "-g2012", "-s", cfg.testbench, "-o", sim_binary]
        if Path(cfg.include_dir).is_dir():
            compile_cmd.extend(["-I", cfg.include_dir])
        compile_cmd.extend(files.rtl + files.testbench)
        run = [self.companions["vvp"], "-n", sim_binary]
        return [(compile_cmd, cfg.project_root), (run, cfg.project_root)]

    def record(self, cfg, output):
        log = self.store.path_for("sim_log", cfg)
        log.parent.mkdir(parents=True, exist_ok=True)
        log.write_text(output + "\n")


class SynthesizeStage(PipelineStage):
    name = "synthesize"

    def check_inputs(self, cfg):
        files = read_filelist(self.store.path_for("file_list", cfg))
        if not files.rtl:
            return f"file list {cfg.file_list} has no RTL sources, add some to {cfg.rtl_dir}"
        return None

    def commands(self, cfg):
        files = read_filelist(self.store.path_for("file_list", cfg))
        netlist = self.store.path_for("netlist", cfg)
        read = ["read_verilog", "-sv"]
        if Path(cfg.include_dir).is_dir():
            read.append("-I" + _yosys_quote(cfg.include_dir))
        read.extend(_yosys_quote(path) for path in files.rtl)
        script = (
            f"{' '.join(read)}; "
            f"{self.profile.synth_command} -top {cfg.top} -json {_yosys_quote(netlist)}"
        )
        report = self.store.path_for("synth_report", cfg)
        return [([self.binding.path, "-l", report, "-p", script], cfg.project_root)]


class PlaceRouteStage(PipelineStage):
    """
    Places and routes with nextpnr
    Without a constraint file nextpnr assigns pins itself, which only warns
    """

    name = "place_route"

    def commands(self, cfg):
        cmd = [
            self.binding.path,
            f"--{cfg.device}",
            "--package",
            cfg.package,
            "--json",
            self.store.path_for("netlist", cfg),
            self.profile.pnr_output_flag,
            self.store.path_for("placed", cfg),
            "--report",
            self.store.path_for("pnr_report", cfg),
        ]
        constraints = self.store.path_for("constraints", cfg)
        if constraints.exists():
            cmd.extend([self.profile.constraint_flag, constraints])
        else:
            warning(f"WARNING: No constraint file {constraints}, pins will be auto assigned")
            if self.profile.unconstrained_flag:
                cmd.append(self.profile.unconstrained_flag)
        return [(cmd, cfg.project_root)]


class TimingStage(PipelineStage):
    name = "timing"

    def commands(self, cfg):
        cmd = [
            self.binding.path,
            "-d",
            ICETIME_DEVICES.get(cfg.device, cfg.device),
            "-P",
            cfg.package,
            "-mtr",
            self.store.path_for("timing_report", cfg),
            self.store.path_for("placed", cfg),
        ]
        return [(cmd, cfg.project_root)]


class BitstreamStage(PipelineStage):
    name = "bitstream"

    def commands(self, cfg):
        cmd = [
            self.binding.path,
            self.store.path_for("placed", cfg),
            self.store.path_for("bitstream", cfg),
        ]
        return [(cmd, cfg.project_root)]


class ProgramStage(PipelineStage):
    """
    Writes the bitstream to the device
    A programmer pinned in the configuration disables falling back to the next candidate
    """

    name = "program"

    def tool_candidates(self, cfg):
        if cfg.programmer:
            return (cfg.programmer,)
        return self.profile.tools[self.name]

    def loader_board(self, cfg):
        board = BOARDS.get(cfg.board)
        if board is not None and board.loader_board:
            return board.loader_board
        return self.profile.loader_board

    def commands(self, cfg):
        bitstream = self.store.path_for("bitstream", cfg)
        cmd = [self.binding.path]
        if self.binding.name == "openFPGALoader":
            board = self.loader_board(cfg)
            if board:
                cmd.extend(["-b", board])
        cmd.append(bitstream)
        return [(cmd, cfg.project_root)]


class ContainerStage(PipelineStage):
    """
    A stage whose tool runs inside the family's container image
    The required tool is the container runtime itself
    """

    def __init__(self, name, profile, **kwargs):
        self.name = name
        super().__init__(profile, **kwargs)

    def commands(self, cfg):
        runtime = ContainerRuntime(cfg.container_image or self.profile.container_image)
        tool = QUARTUS_TOOLS[self.name]
        usb = False
        if self.name == "program":
            bitstream = runtime.container_path(self.store.path_for("bitstream", cfg), cfg.project_root)
            args = [tool, "-m", "jtag", "-o", f"p;{bitstream}"]
            usb = True
        else:
            args = [tool, cfg.project, "-c", cfg.project]
        cmd = runtime.wrap(self.binding.path, cfg.project_root, args, usb=usb)
        return [(cmd, cfg.project_root)]


STAGE_CLASSES = {
    cls.name: cls
    for cls in (
        SimulateStage,
        SynthesizeStage,
        PlaceRouteStage,
        TimingStage,
        BitstreamStage,
        ProgramStage,
    )
}


def make_stage(name, profile, **kwargs):
    """
    Creates the stage implementing `name` for a family

    Args:
        name:    Stage name or alias
        profile: The FamilyProfile
        kwargs:  Passed to the stage, see PipelineStage

    Raises:
        ConfigError(UNSUPPORTED_STAGE) if the family does not support the stage

    """
    name = canonical_stage_name(name)
    if name not in profile.stages:
        raise ConfigError(
            ConfigErrorKind.UNSUPPORTED_STAGE,
            f"family {profile.name} has no {name} stage, it supports {', '.join(profile.stages)}",
            key=name,
        )
    if profile.uses_container and name in QUARTUS_TOOLS:
        return ContainerStage(name, profile, **kwargs)
    return STAGE_CLASSES[name](profile, **kwargs)

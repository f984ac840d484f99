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

import pytest

from fpga_pipeline.artifacts import ArtifactStore
from fpga_pipeline.errors import ConfigError, ConfigErrorKind, StageErrorKind
from fpga_pipeline.families import get_family
from fpga_pipeline.stages import (
    ContainerStage,
    StageStatus,
    canonical_stage_name,
    make_stage,
)

from conftest import TOOL_DIR, touch


@pytest.fixture
def store():
    return ArtifactStore()


def stage_for(name, cfg, executor, family=None):
    return make_stage(name, get_family(family or cfg.family), store=ArtifactStore(), executor=executor)


def run_stage(name, cfg, executor, registry, store):
    stage = stage_for(name, cfg, executor)
    precondition = stage.precondition(cfg, store, registry)
    assert precondition.ready, precondition.reason
    return stage.execute(cfg)


@pytest.mark.parametrize(
    "alias, name",
    [("sim", "simulate"), ("synth", "synthesize"), ("pnr", "place_route"), ("placeRoute", "place_route"), ("prog", "program"), ("timing", "timing")],
)
def test_aliases(alias, name):
    assert canonical_stage_name(alias) == name


def test_unknown_stage_name():
    with pytest.raises(ConfigError) as excinfo:
        canonical_stage_name("route")
    assert excinfo.value.kind is ConfigErrorKind.UNSUPPORTED_STAGE


def test_unsupported_stage_for_family():
    with pytest.raises(ConfigError) as excinfo:
        make_stage("timing", get_family("ecp5"))
    assert excinfo.value.kind is ConfigErrorKind.UNSUPPORTED_STAGE
    assert "ecp5" in str(excinfo.value)


def test_quartus_stages_use_the_container():
    assert isinstance(make_stage("synth", get_family("quartus")), ContainerStage)
    assert not isinstance(make_stage("sim", get_family("quartus")), ContainerStage)


def test_execute_before_precondition(cfg, executor):
    stage = stage_for("synthesize", cfg, executor)
    with pytest.raises(RuntimeError):
        stage.execute(cfg)


def test_synthesize_command(cfg, executor, registry, store):
    result = run_stage("synthesize", cfg, executor, registry, store)
    assert result.status is StageStatus.SUCCEEDED
    cmd = executor.command_of("yosys")
    assert cmd[0] == f"{TOOL_DIR}/yosys"
    assert cmd[1:3] == ["-l", str(store.path_for("synth_report", cfg))]
    script = cmd[cmd.index("-p") + 1]
    assert "blinky.v" in script
    assert "blinky_tb.v" not in script
    assert f"synth_ice40 -top blinky -json {store.path_for('netlist', cfg)}" in script
    assert store.path_for("netlist", cfg) in result.produced
    assert result.output == "yosys output"


def test_synthesize_without_rtl(project, make_cfg, executor, registry, store):
    (project / "sources/rtl/blinky.v").unlink()
    cfg = make_cfg()
    stage = stage_for("synthesize", cfg, executor)
    precondition = stage.precondition(cfg, store, registry)
    assert not precondition.ready
    assert precondition.error is StageErrorKind.PRECONDITION_UNMET
    assert "no RTL sources" in precondition.reason


def test_missing_file_list(cfg, executor, registry, store):
    store.path_for("file_list", cfg).unlink()
    precondition = stage_for("simulate", cfg, executor).precondition(cfg, store, registry)
    assert precondition.artifact == "file_list"
    assert precondition.producer is None
    assert "update-list" in precondition.reason


def test_simulate_compiles_then_runs(cfg, executor, registry, store):
    result = run_stage("simulate", cfg, executor, registry, store)
    assert result.succeeded
    assert executor.tools == ["iverilog", "vvp"]
    compile_cmd, cwd = executor.calls[0]
    assert compile_cmd[1:4] == ["-g2012", "-s", "blinky_tb"]
    assert compile_cmd[-2:] == [
        str((cfg.rtl_dir / "blinky.v").resolve()),
        str((cfg.tb_dir / "blinky_tb.v").resolve()),
    ]
    assert cwd == cfg.project_root
    assert store.path_for("sim_log", cfg).read_text() == "iverilog output\nvvp output\n"
    # The testbench doesn't dump waves, that's fine
    assert store.path_for("waveform", cfg) not in result.produced


def test_simulate_needs_vvp(cfg, executor, make_registry, store):
    stage = stage_for("simulate", cfg, executor)
    precondition = stage.precondition(cfg, store, make_registry("iverilog"))
    assert precondition.error is StageErrorKind.TOOL_MISSING
    assert precondition.tool == "vvp"


def test_simulate_failure_is_logged(cfg, executor, registry, store):
    executor.failures["vvp"] = 1
    result = run_stage("simulate", cfg, executor, registry, store)
    assert result.status is StageStatus.FAILED
    assert result.error is StageErrorKind.TOOL_EXECUTION_FAILED
    assert result.reason == "vvp exited with code 1"
    assert "ERROR: vvp failed" in store.path_for("sim_log", cfg).read_text()


def test_place_route_with_constraints(cfg, executor, registry, store):
    touch(str(store.path_for("netlist", cfg)))
    touch(str(store.path_for("constraints", cfg)))
    run_stage("place_route", cfg, executor, registry, store)
    cmd = executor.command_of("nextpnr-ice40")
    assert cmd[1:4] == ["--up5k", "--package", "sg48"]
    assert cmd[cmd.index("--pcf") + 1] == str(store.path_for("constraints", cfg))
    assert "--pcf-allow-unconstrained" not in cmd


def test_place_route_without_constraints(cfg, executor, registry, store):
    touch(str(store.path_for("netlist", cfg)))
    result = run_stage("place_route", cfg, executor, registry, store)
    assert result.succeeded
    cmd = executor.command_of("nextpnr-ice40")
    assert "--pcf" not in cmd
    assert "--pcf-allow-unconstrained" in cmd


def test_ecp5_place_route(make_cfg, executor, registry, store):
    cfg = make_cfg("ecp5", device="45k")
    touch(str(store.path_for("netlist", cfg)))
    run_stage("pnr", cfg, executor, registry, store)
    cmd = executor.command_of("nextpnr-ecp5")
    assert cmd[1] == "--45k"
    assert "--textcfg" in cmd
    assert "--lpf-allow-unconstrained" in cmd


def test_timing_command(cfg, executor, registry, store):
    touch(str(store.path_for("placed", cfg)))
    run_stage("timing", cfg, executor, registry, store)
    assert executor.command_of("icetime")[1:7] == ["-d", "up5k", "-P", "sg48", "-mtr", str(store.path_for("timing_report", cfg))]


def test_timing_uses_the_die_of_4k_parts(make_cfg, executor, registry, store):
    cfg = make_cfg(device="hx4k", package="tq144")
    touch(str(store.path_for("placed", cfg)))
    run_stage("timing", cfg, executor, registry, store)
    assert executor.command_of("icetime")[1:5] == ["-d", "hx8k", "-P", "tq144"]


def test_tool_that_produces_nothing_fails(cfg, executor, registry, store):
    touch(str(store.path_for("placed", cfg)))
    executor.effects["icepack"] = lambda cmd: None
    result = run_stage("bitstream", cfg, executor, registry, store)
    assert result.status is StageStatus.FAILED
    assert "did not produce bitstream" in result.reason


def test_timeout_fails_the_stage(make_cfg, executor, registry, store):
    cfg = make_cfg(timeout="5")
    executor.timeouts["yosys"] = 5.0
    result = run_stage("synthesize", cfg, executor, registry, store)
    assert result.status is StageStatus.FAILED
    assert result.reason == "yosys timed out after 5s"


def test_interrupt_cancels_the_stage(cfg, executor, registry, store):
    executor.cancel.add("yosys")
    result = run_stage("synthesize", cfg, executor, registry, store)
    assert result.status is StageStatus.CANCELLED
    assert result.error is StageErrorKind.CANCELLED


def test_program_falls_back_to_open_fpga_loader(cfg, executor, make_registry, store):
    touch(str(store.path_for("bitstream", cfg)))
    run_stage("program", cfg, executor, make_registry("openFPGALoader"), store)
    assert executor.command_of("openFPGALoader")[1:] == ["-b", "ice40_generic", str(store.path_for("bitstream", cfg))]


def test_pinned_programmer_disables_fallback(make_cfg, executor, make_registry, store):
    cfg = make_cfg(programmer="iceprog")
    touch(str(store.path_for("bitstream", cfg)))
    stage = stage_for("program", cfg, executor)
    precondition = stage.precondition(cfg, store, make_registry("openFPGALoader"))
    assert precondition.error is StageErrorKind.TOOL_MISSING
    assert precondition.tool == "iceprog"


def test_board_selects_loader_board(make_cfg, executor, registry, store):
    cfg = make_cfg(board="icebreaker", programmer="openFPGALoader")
    touch(str(store.path_for("bitstream", cfg)))
    run_stage("program", cfg, executor, registry, store)
    assert executor.command_of("openFPGALoader")[1:3] == ["-b", "icebreaker"]


def test_quartus_synthesis_in_container(make_cfg, executor, registry, store):
    cfg = make_cfg("quartus")
    touch(str(store.path_for("project_settings", cfg)))
    executor.effects["docker"] = lambda cmd: [
        touch(str(store.path_for(name, cfg))) for name in ("netlist", "synth_report")
    ]
    result = run_stage("synthesize", cfg, executor, registry, store)
    assert result.succeeded
    cmd = executor.command_of("docker")
    assert cmd[1:3] == ["run", "--rm"]
    assert f"{cfg.project_root}:/build" in cmd
    assert cmd[-4:] == ["quartus_map", "blinky", "-c", "blinky"]
    assert "raetro/quartus:21.1" in cmd


def test_quartus_needs_project_settings(make_cfg, executor, registry, store):
    cfg = make_cfg("quartus")
    precondition = stage_for("synthesize", cfg, executor).precondition(cfg, store, registry)
    assert precondition.artifact == "project_settings"


def test_quartus_program_passes_usb(make_cfg, executor, registry, store):
    cfg = make_cfg("quartus")
    touch(str(store.path_for("bitstream", cfg)))
    run_stage("program", cfg, executor, registry, store)
    cmd = executor.command_of("docker")
    assert "--privileged" in cmd
    assert cmd[-1] == "p;/build/backend/bitstream/blinky.sof"

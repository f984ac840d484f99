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
from fpga_pipeline.config import ConfigResolver, load_project_config, project_file
from fpga_pipeline.errors import ConfigError, ConfigErrorKind
from fpga_pipeline.filelist import read_filelist
from fpga_pipeline.scaffold import clean, create_project

from conftest import touch


def test_layout(tmp_path):
    cfg = create_project(tmp_path, "blinky", "ice40")
    root = tmp_path / "blinky"
    assert cfg.project_root == root.resolve()
    for directory in (
        "sources/rtl",
        "sources/tb",
        "sources/include",
        "sources/constraints",
        "sim/waves",
        "sim/logs",
        "backend/synth",
        "backend/pnr",
        "backend/bitstream",
        "backend/reports",
    ):
        assert (root / directory / ".gitkeep").is_file()
    assert "sources/rtl_list.f" in (root / ".gitignore").read_text()
    assert load_project_config(project_file(root)) == {
        "project": "blinky",
        "family": "ice40",
        "device": "up5k",
        "package": "sg48",
        "top": "top",
        "testbench": "top_tb",
    }
    assert (root / "sources/rtl_list.f").is_file()


def test_board_is_persisted(tmp_path):
    create_project(tmp_path, "stick", "ice40", board="icestick")
    assert "device" not in load_project_config(project_file(tmp_path / "stick"))
    cfg = ConfigResolver(tmp_path / "stick").resolve()
    assert (cfg.board, cfg.device, cfg.package) == ("icestick", "hx1k", "tq144")


def test_example_design(tmp_path):
    cfg = create_project(tmp_path, "demo", "ice40", example=True)
    assert (cfg.top, cfg.testbench) == ("adder", "adder_tb")
    testbench = (cfg.tb_dir / "adder_tb.v").read_text()
    assert '$dumpfile("sim/waves/adder_tb.vcd");' in testbench
    assert "$$" not in testbench
    assert "project demo" in (cfg.rtl_dir / "adder.v").read_text()
    assert ArtifactStore().exists("constraints", cfg)

    files = read_filelist(cfg.file_list)
    assert [path.name for path in files.rtl] == ["adder.v"]
    assert [path.name for path in files.testbench] == ["adder_tb.v"]


def test_example_waveform_matches_the_artifact(tmp_path):
    cfg = create_project(tmp_path, "demo", "ecp5", example=True)
    waveform = ArtifactStore().path_for("waveform", cfg)
    assert str(waveform.relative_to(cfg.project_root)) in (cfg.tb_dir / "adder_tb.v").read_text()
    assert not ArtifactStore().exists("constraints", cfg)


def test_quartus_project_files(tmp_path):
    cfg = create_project(tmp_path, "max10", "quartus", board="de10-lite", example=True)
    root = tmp_path / "max10"
    qsf = (root / "max10.qsf").read_text()
    assert 'FAMILY "MAX 10"' in qsf
    assert "DEVICE 10M50DAF484C7G" in qsf
    assert "TOP_LEVEL_ENTITY adder" in qsf
    assert "PROJECT_OUTPUT_DIRECTORY backend/bitstream" in qsf
    assert "set_global_assignment -name VERILOG_FILE sources/rtl/adder.v" in qsf
    assert 'PROJECT_REVISION = "max10"' in (root / "max10.qpf").read_text()
    assert ArtifactStore().exists("project_settings", cfg)


def test_existing_directory_needs_force(tmp_path):
    (tmp_path / "taken").mkdir()
    with pytest.raises(ConfigError) as excinfo:
        create_project(tmp_path, "taken", "ice40")
    assert "--force" in str(excinfo.value)
    create_project(tmp_path, "taken", "ice40", force=True)
    assert project_file(tmp_path / "taken").is_file()


@pytest.mark.parametrize("name", ["my project", "../escape", ""])
def test_invalid_names(tmp_path, name):
    with pytest.raises(ConfigError) as excinfo:
        create_project(tmp_path, name, "ice40")
    assert excinfo.value.kind is ConfigErrorKind.INVALID_VALUE


def test_invalid_board_leaves_nothing_behind(tmp_path):
    with pytest.raises(ConfigError) as excinfo:
        create_project(tmp_path, "demo", "ice40", board="ulx3s")
    assert excinfo.value.kind is ConfigErrorKind.UNKNOWN_BOARD
    assert not (tmp_path / "demo").exists()


def test_clean_keeps_sources_and_gitkeep(tmp_path):
    cfg = create_project(tmp_path, "demo", "ice40", example=True)
    store = ArtifactStore()
    for name in ("sim_binary", "netlist", "placed", "bitstream", "synth_report"):
        touch(str(store.path_for(name, cfg)))

    removed = clean(cfg)
    assert len(removed) == 5
    for name in ("sim_binary", "netlist", "placed", "bitstream"):
        assert not store.exists(name, cfg)
    assert (cfg.bitstream_dir / ".gitkeep").is_file()
    assert (cfg.sim_dir / "waves" / ".gitkeep").is_file()
    assert (cfg.rtl_dir / "adder.v").is_file()


def test_clean_removes_quartus_databases(tmp_path):
    cfg = create_project(tmp_path, "max10", "quartus")
    touch(str(cfg.project_root / "db" / "max10.db_info"))
    clean(cfg)
    assert not (cfg.project_root / "db").exists()
    assert (cfg.project_root / "max10.qsf").is_file()

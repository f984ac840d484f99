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

Command line front end for configuring and running FPGA pipelines

"""

import argparse
from pathlib import Path

from .artifacts import ArtifactStore, project_status
from .config import CONFIG_KEYS, ConfigResolver
from .errors import ConfigError, ConfigErrorKind
from .families import BOARDS, FAMILIES, boards_for, get_family
from .filelist import generate_filelist
from .runner import PipelineRunner, resolve_pipeline
from .scaffold import clean, create_project
from .stages import make_stage
from .tools import ToolRegistry
from .utils import caller_dir, err, info, run_cmd, success, warning

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130

DEFAULT_FAMILY = "ice40"
WAVE_VIEWER = "gtkwave"

# Flags mirroring a configuration key of the same name
OVERRIDE_FLAGS = (
    "family",
    "board",
    "device",
    "package",
    "project",
    "top",
    "testbench",
    "rtl_dir",
    "tb_dir",
    "include_dir",
    "constraints_dir",
    "constraint_file",
    "sim_dir",
    "synth_dir",
    "pnr_dir",
    "bitstream_dir",
    "reports_dir",
    "file_list",
    "programmer",
    "container_image",
    "timeout",
)

# Sub-commands that work on a resolved project configuration
CONFIG_COMMANDS = ("run", "update-list", "check-tools", "status", "config", "waves", "clean")


def build_default(family=None, overrides=None, argv=None):
    """
    Parses arguments and runs the requested command for the project next to the
    calling script
    Provides default arguments if no overrides needed

    Args:
        family:    Family of the project, the command line can still select another
        overrides: Configuration for this script, wins over fpga_project.yaml but not the command line
        argv:      Arguments to parse, defaults to sys.argv

    Returns:
        The exit code

    """
    defaults = dict(overrides or {})
    if family is not None:
        defaults.setdefault("family", family)
    return main(argv, defaults=defaults, project_root=caller_dir())


def main(argv=None, defaults=None, project_root=None):
    """
    Entry point of the fpga-pipeline command

    Args:
        argv:         Arguments to parse, defaults to sys.argv
        defaults:     Override values applied below the command line flags
        project_root: Project root used when --project-root is not given

    Returns:
        0 if everything succeeded, 1 on a failed or skipped stage, 2 on a
        configuration error and 130 if cancelled

    """
    parser = get_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_CONFIG_ERROR
    if args.command in CONFIG_COMMANDS and args.project_root is None:
        args.project_root = project_root or Path.cwd()
    try:
        return COMMANDS[args.command](args, defaults or {})
    except ConfigError as e:
        err(f"ERROR: {e}")
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        err("ERROR: Cancelled")
        return EXIT_CANCELLED


def overrides_from_args(args, defaults=None):
    """
    Collects configuration overrides from parsed arguments

    Args:
        args:     Parsed arguments with the configuration group
        defaults: Values the flags and --set pairs override

    Returns:
        Mapping of configuration key to string value

    Raises:
        ConfigError(INVALID_VALUE) for a --set pair without "="

    """
    overrides = dict(defaults or {})
    for key in OVERRIDE_FLAGS:
        value = getattr(args, key, None)
        if value is not None:
            overrides[key] = str(value)
    for pair in args.set or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(
                ConfigErrorKind.INVALID_VALUE, f"--set expects KEY=VALUE, got '{pair}'", key=pair
            )
        overrides[key.strip().replace("-", "_")] = value.strip()
    return overrides


def resolve_config(args, defaults=None):
    resolver = ConfigResolver(args.project_root)
    return resolver.resolve(overrides=overrides_from_args(args, defaults))


def cmd_run(args, defaults):
    cfg = resolve_config(args, defaults)
    profile = get_family(cfg.family)
    stage_names = resolve_pipeline(args.pipeline, profile)
    runner = PipelineRunner(registry=ToolRegistry(), store=ArtifactStore())
    # Unsupported stages are configuration errors, raised before anything changes
    for name in stage_names:
        runner.make_stage(name, profile)

    if not args.no_update_list:
        files = generate_filelist(cfg)
        info(
            f"Updated {cfg.file_list}: {len(files.rtl)} RTL, {len(files.testbench)} testbench files"
        )
    info(f"Running {', '.join(stage_names)} for {cfg.project} on {cfg.family} {cfg.device}")
    result = runner.run(stage_names, cfg)
    if result.success:
        success("Done!")
        return EXIT_OK
    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILED


def cmd_new(args, defaults):
    family = args.family or defaults.get("family") or DEFAULT_FAMILY
    cfg = create_project(
        args.parent,
        args.name,
        family,
        board=args.board,
        example=args.example,
        force=args.force,
    )
    info(f"Next: cd {cfg.project_root} && fpga-pipeline run quick-test")
    return EXIT_OK


def cmd_update_list(args, defaults):
    cfg = resolve_config(args, defaults)
    files = generate_filelist(cfg)
    success(f"Wrote {cfg.file_list}")
    info(f"RTL files:       {len(files.rtl)}")
    info(f"Testbench files: {len(files.testbench)}")
    return EXIT_OK


def cmd_check_tools(args, defaults):
    cfg = resolve_config(args, defaults)
    profile = get_family(cfg.family)
    registry = ToolRegistry()
    all_found = True
    info(f"Tools for {profile.name} ({profile.description})")
    for stage_name in profile.stages:
        stage = make_stage(stage_name, profile)
        for tool in stage.tool_candidates(cfg) + stage.companion_tools:
            binding = registry.resolve(tool)
            label = f"  {stage_name.ljust(12)} {tool.ljust(16)}"
            if binding.found:
                success(f"{label} {binding.path}")
            else:
                warning(f"{label} not found")
        tools_found = registry.resolve_first(stage.tool_candidates(cfg)).found and all(
            registry.is_available(tool) for tool in stage.companion_tools
        )
        if not tools_found:
            all_found = False
    if all_found:
        success("All required tools found")
        return EXIT_OK
    err("ERROR: Some required tools are missing, stages using them will be skipped")
    return EXIT_FAILED


def cmd_status(args, defaults):
    cfg = resolve_config(args, defaults)
    info(f"Project {cfg.project} ({cfg.family} {cfg.device} {cfg.package})")
    for artifact, exists, stale in project_status(cfg, ArtifactStore()):
        label = f"  {artifact.name.ljust(18)}"
        if not exists:
            info(f"{label} missing  {artifact.path}")
        elif stale:
            warning(f"{label} stale    {artifact.path}")
        else:
            success(f"{label} present  {artifact.path}")
    return EXIT_OK


def cmd_config(args, defaults):
    cfg = resolve_config(args, defaults)
    values = cfg.as_dict()
    info(f"Project root: {cfg.project_root}")
    for key in CONFIG_KEYS:
        value = values[key]
        if value is None:
            value = ""
        info(f"  {key.ljust(16)} {str(value).ljust(40)} ({cfg.source_of(key)})")
    return EXIT_OK


def cmd_waves(args, defaults):
    cfg = resolve_config(args, defaults)
    waveform = ArtifactStore().path_for("waveform", cfg)
    if not waveform.exists():
        err(f"ERROR: No waveform at {waveform}, run the simulate stage first")
        return EXIT_FAILED
    viewer = ToolRegistry().resolve(WAVE_VIEWER)
    if not viewer.found:
        err(f"ERROR: {WAVE_VIEWER} not found, install it or add it to PATH")
        return EXIT_FAILED
    run_cmd([viewer.path, waveform], cwd=cfg.project_root, blocking=False)
    return EXIT_OK


def cmd_families(args, defaults):
    for profile in FAMILIES.values():
        info(f"{profile.name.ljust(10)} {profile.description}")
        info(f"  {'default'.ljust(10)} {profile.default_device} {profile.default_package}")
        info(f"  {'devices'.ljust(10)} {', '.join(profile.devices)}")
        info(f"  {'stages'.ljust(10)} {', '.join(profile.stages)}")
        info(f"  {'all'.ljust(10)} {', '.join(profile.all_stages)}")
        boards = boards_for(profile.name)
        if boards:
            info(f"  {'boards'.ljust(10)} {', '.join(board.name for board in boards)}")
    return EXIT_OK


def cmd_clean(args, defaults):
    cfg = resolve_config(args, defaults)
    removed = clean(cfg)
    success(f"Removed {len(removed)} generated files from {cfg.project}")
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "new": cmd_new,
    "update-list": cmd_update_list,
    "check-tools": cmd_check_tools,
    "status": cmd_status,
    "config": cmd_config,
    "waves": cmd_waves,
    "families": cmd_families,
    "clean": cmd_clean,
}


def get_parser():
    """
    Generates the argument parser with one sub-command per operation

    Returns:
        An argparse parser

    """
    main_parser = argparse.ArgumentParser(
        "fpga-pipeline",
        description="Configure and run FPGA simulate/synthesize/place/route/program flows",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = main_parser.add_subparsers(help="sub-command help", dest="command")

    run_parser = subparsers.add_parser(
        "run",
        help="Run a stage, a family's full flow or quick-test",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    run_parser.add_argument(
        "pipeline",
        help="A stage (simulate, synthesize, place_route, timing, bitstream, program or "
        "sim, synth, pnr, prog), all, quick-test or a family name",
    )
    run_parser.add_argument(
        "--no-update-list",
        default=False,
        action="store_true",
        help="Don't regenerate the file list before running",
    )
    _add_config_args(run_parser)

    new_parser = subparsers.add_parser(
        "new", help="Create a new project", formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    new_parser.add_argument("name", help="Project name, letters, numbers, _ and - only")
    new_parser.add_argument(
        "--family", default=None, choices=list(FAMILIES), help=f"FPGA family, {DEFAULT_FAMILY} if not set"
    )
    new_parser.add_argument("--board", default=None, choices=list(BOARDS), help="Board preset")
    new_parser.add_argument(
        "--parent", default=".", type=Path, help="Directory to create the project in"
    )
    new_parser.add_argument(
        "--example",
        default=False,
        action="store_true",
        help="Add an example adder design with testbench",
    )
    new_parser.add_argument(
        "-f",
        "--force",
        default=False,
        action="store_true",
        help="Create even if the directory already exists",
    )

    helps = {
        "update-list": "Regenerate the RTL and testbench file list",
        "check-tools": "Show where each tool of the family was found",
        "status": "Show which artifacts exist and which are out of date",
        "config": "Show the effective configuration and where each value came from",
        "waves": "Open the simulation waveform in GTKWave",
        "clean": "Remove generated build outputs",
    }
    for name, help_text in helps.items():
        parser = subparsers.add_parser(
            name, help=help_text, formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        _add_config_args(parser)

    subparsers.add_parser("families", help="List supported families and boards")
    return main_parser


def _add_config_args(parser):
    group = parser.add_argument_group("config", "Configuration overrides, win over fpga_project.yaml")
    group.add_argument(
        "--project-root",
        default=None,
        type=Path,
        help="Directory holding fpga_project.yaml, the current directory if not set",
    )
    group.add_argument("--family", default=None, help="FPGA family")
    group.add_argument("--board", default=None, help="Board preset, selects device and package")
    group.add_argument("--device", default=None, help="Device, i.e. up5k")
    group.add_argument("--package", default=None, help="Package, i.e. sg48")
    group.add_argument("--project", default=None, help="Project name used in output file names")
    group.add_argument("--top", default=None, help="Top level module")
    group.add_argument("--testbench", default=None, help="Testbench top module")
    group.add_argument("--rtl-dir", default=None, help="RTL source directory")
    group.add_argument("--tb-dir", default=None, help="Testbench source directory")
    group.add_argument("--include-dir", default=None, help="Verilog include directory")
    group.add_argument("--constraints-dir", default=None, help="Constraint file directory")
    group.add_argument(
        "--constraint-file", default=None, help="Explicit constraint file, wins over the directory"
    )
    group.add_argument("--sim-dir", default=None, help="Simulation output directory")
    group.add_argument("--synth-dir", default=None, help="Synthesis output directory")
    group.add_argument("--pnr-dir", default=None, help="Place and route output directory")
    group.add_argument("--bitstream-dir", default=None, help="Bitstream output directory")
    group.add_argument("--reports-dir", default=None, help="Report directory")
    group.add_argument("--file-list", default=None, help="Generated file list")
    group.add_argument("--programmer", default=None, help="Programmer to use, disables fallback")
    group.add_argument("--container-image", default=None, help="Image for container stages")
    group.add_argument(
        "--timeout", default=None, help="Seconds before a tool is killed, no limit if not set"
    )
    group.add_argument(
        "--set",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Override any configuration key, repeatable",
    )
    return parser

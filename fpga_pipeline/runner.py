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

Runs an ordered list of stages with fail fast semantics

"""

from dataclasses import dataclass, field

from .artifacts import ArtifactStore
from .errors import ConfigError, ConfigErrorKind
from .families import FAMILIES, get_family
from .stages import STAGE_IO, StageResult, StageStatus, canonical_stage_name, make_stage
from .tools import ToolRegistry
from .utils import err, info, run_cmd, success, tool_line_handler, warning

# Composite commands not tied to one stage
QUICK_TEST = ("simulate",)


@dataclass
class RunResult:
    """
    Outcome of one PipelineRunner.run call

    Args:
        requested: Canonical stage names asked for, in order
        results:   StageResult of every stage that was attempted, in order

    """

    requested: list
    results: list = field(default_factory=list)

    @property
    def success(self):
        return len(self.results) == len(self.requested) and all(
            result.succeeded for result in self.results
        )

    @property
    def cancelled(self):
        return any(result.status is StageStatus.CANCELLED for result in self.results)

    @property
    def first_failure(self):
        for result in self.results:
            if not result.succeeded:
                return result
        return None

    @property
    def not_run(self):
        return self.requested[len(self.results):]

    def status_of(self, stage):
        for result in self.results:
            if result.stage == stage:
                return result.status
        return StageStatus.PENDING


def resolve_pipeline(command, profile):
    """
    Expands a pipeline command into stage names

    Args:
        command: A stage name or alias, "all", "quick-test" or a family name
        profile: FamilyProfile of the effective configuration

    Returns:
        List of canonical stage names

    Raises:
        ConfigError if the command names another family or an unknown stage

    """
    if command == "all":
        return list(profile.all_stages)
    if command == "quick-test":
        return list(QUICK_TEST)
    if command in FAMILIES:
        if command != profile.name:
            raise ConfigError(
                ConfigErrorKind.INVALID_VALUE,
                f"pipeline '{command}' does not match the configured family {profile.name}",
                key=command,
            )
        return list(profile.all_stages)
    return [canonical_stage_name(command)]


class PipelineRunner:
    """
    Executes stages strictly in the given order, stopping at the first stage
    that is skipped, fails or is cancelled

    Args:
        registry:     ToolRegistry shared by every stage of the run
        store:        ArtifactStore
        executor:     Function running a command, with run_cmd's signature
        line_handler: Function of each line of tool output

    """

    def __init__(self, registry=None, store=None, executor=run_cmd, line_handler=tool_line_handler):
        self.registry = ToolRegistry() if registry is None else registry
        self.store = ArtifactStore() if store is None else store
        self.executor = executor
        self.line_handler = line_handler

    def make_stage(self, name, profile):
        return make_stage(
            name,
            profile,
            store=self.store,
            executor=self.executor,
            line_handler=self.line_handler,
        )

    def run(self, stage_names, cfg):
        """
        Runs stages in order

        Args:
            stage_names: Ordered stage names or aliases
            cfg:         The EffectiveConfig

        Returns:
            A RunResult

        Raises:
            ConfigError before anything runs if a stage is unknown or unsupported

        """
        profile = get_family(cfg.family)
        stages = [self.make_stage(name, profile) for name in stage_names]
        run_result = RunResult(requested=[stage.name for stage in stages])

        for stage in stages:
            precondition = stage.precondition(cfg, self.store, self.registry)
            if not precondition.ready:
                err(f"ERROR: Stage {stage.name} skipped: {precondition.reason}")
                run_result.results.append(
                    StageResult(
                        stage=stage.name,
                        status=StageStatus.SKIPPED,
                        reason=precondition.reason,
                        error=precondition.error,
                    )
                )
                break
            self.report_stale(stage, cfg)
            info(f"Running stage {stage.name}...")
            result = stage.execute(cfg)
            run_result.results.append(result)
            if not result.succeeded:
                err(f"ERROR: Stage {stage.name} {result.status.value}: {result.reason}")
                break
            success(f"Stage {stage.name} succeeded")

        if run_result.not_run:
            warning(f"Not run: {', '.join(run_result.not_run)}")
        return run_result

    def stale_outputs(self, stage, cfg):
        """
        Lists outputs of a stage older than one of its inputs
        Advisory only, stages are always safe to re-run
        """
        consumes, produces = STAGE_IO[stage.name]
        ret = []
        for output in produces:
            if not self.store.declares(output, cfg):
                continue
            for source in consumes:
                if self.store.declares(source, cfg) and self.store.newer_than(source, output, cfg):
                    ret.append(output)
                    break
        return ret

    def report_stale(self, stage, cfg):
        stale = self.stale_outputs(stage, cfg)
        if stale:
            info(f"Outputs of {stage.name} are out of date: {', '.join(stale)}")

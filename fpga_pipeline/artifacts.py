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

Expected file system locations of pipeline inputs and outputs

"""

from dataclasses import dataclass
from pathlib import Path

from .families import FAMILIES

# Stage producing each artifact, None for inputs provided by the user or the CLI
PRODUCERS = {
    "file_list": None,
    "constraints": None,
    "project_settings": None,
    "sim_binary": "simulate",
    "sim_log": "simulate",
    "waveform": "simulate",
    "netlist": "synthesize",
    "synth_report": "synthesize",
    "placed": "place_route",
    "pnr_report": "place_route",
    "timing_report": "timing",
    "bitstream": "bitstream",
}

CONSUMERS = {
    "file_list": ("simulate", "synthesize"),
    "project_settings": ("synthesize",),
    "constraints": ("place_route",),
    "netlist": ("place_route",),
    "placed": ("timing", "bitstream"),
    "bitstream": ("program",),
}

# Never a reason to stop a stage: testbenches may not dump waves, pins may be auto assigned
OPTIONAL = ("waveform", "constraints")

# How to get an input nobody in the pipeline produces
INPUT_HINTS = {
    "file_list": "run `fpga-pipeline update-list`",
    "constraints": "add a constraint file to the constraints directory",
    "project_settings": "create the project with `fpga-pipeline new --family quartus`",
}


@dataclass(frozen=True)
class Artifact:
    name: str
    path: Path
    producer: str
    consumers: tuple
    optional: bool

    def exists(self):
        return self.path.exists()


class ArtifactStore:
    """
    Answers where each artifact of an EffectiveConfig lives and whether it exists
    Existence is checked on every call, files can change between runs

    Args:
        families: Family name to FamilyProfile, defaults to the built in table

    """

    def __init__(self, families=None):
        self.families = FAMILIES if families is None else families

    def names(self, cfg):
        return list(self.families[cfg.family].artifacts)

    def declares(self, name, cfg):
        return name in self.families[cfg.family].artifacts

    def path_for(self, name, cfg):
        """
        Gets the declared path of an artifact, a pure function of the configuration

        Args:
            name: Artifact name, i.e. "netlist"
            cfg:  The EffectiveConfig

        Returns:
            An absolute Path

        Raises:
            KeyError if the family does not declare the artifact

        """
        if name == "constraints" and cfg.constraint_file is not None:
            return Path(cfg.constraint_file)
        template = self.families[cfg.family].artifacts[name]
        return Path(template.format(**cfg.as_dict()))

    def artifact(self, name, cfg):
        return Artifact(
            name=name,
            path=self.path_for(name, cfg),
            producer=PRODUCERS.get(name),
            consumers=CONSUMERS.get(name, ()),
            optional=name in OPTIONAL,
        )

    def exists(self, name, cfg):
        return self.path_for(name, cfg).exists()

    def mtime(self, name, cfg):
        path = self.path_for(name, cfg)
        if not path.exists():
            return None
        return path.stat().st_mtime

    def newer_than(self, a, b, cfg):
        """
        Checks whether artifact a was modified after artifact b
        Advisory only, used to flag stale outputs

        Returns:
            False if either artifact does not exist

        """
        a_time = self.mtime(a, cfg)
        b_time = self.mtime(b, cfg)
        if a_time is None or b_time is None:
            return False
        return a_time > b_time

    @staticmethod
    def producer_of(name):
        return PRODUCERS.get(name)

    @staticmethod
    def hint_for(name):
        producer = PRODUCERS.get(name)
        if producer is not None:
            return f"run the {producer} stage first"
        return INPUT_HINTS.get(name, "provide it")


def project_status(cfg, store):
    """
    Reports every artifact of a configuration

    Args:
        cfg:   The EffectiveConfig
        store: An ArtifactStore

    Returns:
        A list of (Artifact, exists, stale) tuples, stale meaning an input of the
        producing stage was modified after the artifact

    """
    ret = []
    for name in store.names(cfg):
        artifact = store.artifact(name, cfg)
        exists = artifact.exists()
        stale = False
        if exists and artifact.producer is not None:
            inputs = [
                other
                for other, consumers in CONSUMERS.items()
                if artifact.producer in consumers and store.declares(other, cfg)
            ]
            stale = any(store.newer_than(other, name, cfg) for other in inputs)
        ret.append((artifact, exists, stale))
    return ret

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from bittensor import logging

from constants import BUILD_NAME, PACKAGE_TEMPLATES, TEMPLATE_DIR
from utils.system import get_temp_folder, remove_path

if TYPE_CHECKING:
    from protocol import BuildRequest


@dataclass
class BuildPaths:
    """
    Paths to every file a build reads or writes.

    ``*_relative`` paths are relative to the package directory and end up in
    the rendered templates.
    """

    package_name: str
    protocol: str
    base_dir: str = field(default_factory=get_temp_folder)
    package_dir: str = field(init=False)
    circuits_dir: str = field(init=False)
    build_dir: str = field(init=False)
    local_ptau_dir: str = field(init=False)
    ptau_cache_dir: str = field(init=False)
    main_circuit: str = field(init=False)
    circuit_build_dir: str = field(init=False)
    r1cs: str = field(init=False)
    wasm_relative: str = field(init=False)
    pkey_relative: str = field(init=False)
    pkey: str = field(init=False)
    vkey_relative: str = field(init=False)
    vkey: str = field(init=False)
    contract: str = field(init=False)
    circomkit_config: str = field(init=False)
    circuits_config: str = field(init=False)
    info: str = field(init=False)
    source_archive: str = field(init=False)
    package_archive: str = field(init=False)

    def __post_init__(self):
        self.package_dir = os.path.join(self.base_dir, self.package_name)
        self.circuits_dir = os.path.join(self.package_dir, "circuits")
        self.build_dir = os.path.join(self.package_dir, "build")
        self.local_ptau_dir = os.path.join(self.package_dir, "ptau")
        self.ptau_cache_dir = os.path.join(self.base_dir, "ptau")
        self.main_circuit = os.path.join(self.circuits_dir, "main", f"{BUILD_NAME}.circom")
        self.circuit_build_dir = os.path.join(self.build_dir, BUILD_NAME)
        self.r1cs = os.path.join(self.circuit_build_dir, f"{BUILD_NAME}.r1cs")
        self.wasm_relative = os.path.join(
            "build", BUILD_NAME, f"{BUILD_NAME}_js", f"{BUILD_NAME}.wasm"
        )
        self.pkey_relative = os.path.join(
            "build", BUILD_NAME, f"{self.protocol}_pkey.zkey"
        )
        self.pkey = os.path.join(self.package_dir, self.pkey_relative)
        self.vkey_relative = os.path.join(
            "build", BUILD_NAME, f"{self.protocol}_vkey.json"
        )
        self.vkey = os.path.join(self.package_dir, self.vkey_relative)
        self.contract = os.path.join(
            self.circuit_build_dir, f"{self.protocol}_verifier.sol"
        )
        self.circomkit_config = os.path.join(self.package_dir, "circomkit.json")
        self.circuits_config = os.path.join(self.package_dir, "circuits.json")
        self.info = os.path.join(self.package_dir, "info.json")
        self.source_archive = f"{self.package_dir}-source.zip"
        self.package_archive = f"{self.package_dir}.zip"

    def step_zkey(self, step: int) -> str:
        return os.path.join(self.circuit_build_dir, f"step{step}.zkey")


def main_component_source(request: "BuildRequest") -> str:
    circuit = request.circuit
    params = ", ".join(str(param) for param in circuit.params)
    public = f" {{public [{', '.join(circuit.pubs)}]}}" if circuit.pubs else ""
    return (
        "// auto-generated by circuit-pipeline\n"
        f"pragma circom {request.circom_version};\n"
        "\n"
        f'include "../{circuit.file}.circom";\n'
        "\n"
        f"component main{public} = {circuit.template}({params});\n"
    )


class WorkspaceManager:
    """
    Stages the per-build directory tree before any external tool runs.
    """

    def __init__(self, paths: BuildPaths):
        self.paths = paths

    def stage(self, request: "BuildRequest"):
        """
        Create the workspace and write sources and descriptors.

        The package directory must not already exist; it belongs to exactly
        one build.
        """
        os.makedirs(self.paths.base_dir, exist_ok=True)
        os.mkdir(self.paths.package_dir)
        os.mkdir(self.paths.circuits_dir)
        os.mkdir(self.paths.build_dir)
        if request.needs_local_ptau:
            os.mkdir(self.paths.local_ptau_dir)
        os.makedirs(self.paths.ptau_cache_dir, exist_ok=True)

        for relative_path, source in request.files.items():
            self.write_file(relative_path, source.code)

        self.write_file(
            os.path.relpath(self.paths.main_circuit, self.paths.circuits_dir),
            main_component_source(request),
        )
        self.write_descriptors(request)
        logging.debug(
            f"Staged {len(request.files)} files in {self.paths.circuits_dir}"
        )

    def write_file(self, relative_path: str, content: str):
        target = os.path.join(self.paths.circuits_dir, relative_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)

    def write_descriptors(self, request: "BuildRequest"):
        config = {
            "circomPath": request.circom_path,
            "protocol": request.protocol,
            "prime": request.prime,
            "cWitness": request.c_witness,
            "skipWasm": request.skip_wasm,
            "optimization": request.optimization,
            "verbose": True,
            "circuits": "./circuits.json",
            "dirBuild": "./build",
        }
        if request.needs_local_ptau:
            config["dirPtau"] = "./ptau"
        _write_json(self.paths.circomkit_config, config)
        _write_json(
            self.paths.circuits_config,
            {request.circuit_name: request.circuit.model_dump()},
        )

    def render_templates(self, replacements: dict[str, str], template_dir: Optional[str] = None):
        """
        Copy the package templates into the workspace, substituting each
        ``%%key%%`` placeholder literally.
        """
        template_dir = template_dir or TEMPLATE_DIR
        for template in PACKAGE_TEMPLATES:
            with open(os.path.join(template_dir, template), "r", encoding="utf-8") as f:
                content = f.read()
            for key, value in replacements.items():
                content = content.replace(f"%%{key}%%", value)
            with open(
                os.path.join(self.paths.package_dir, template), "w", encoding="utf-8"
            ) as f:
                f.write(content)

    def cleanup(self):
        for path in (
            self.paths.package_dir,
            self.paths.source_archive,
            self.paths.package_archive,
        ):
            remove_path(path)


def _write_json(path: str, payload):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

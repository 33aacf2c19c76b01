from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from build_layer.toolchain.base_handler import ProvingSystemHandler
from build_layer.toolchain.snarkjs_handler import SnarkjsHandler
from constants import SNARKJS_VERSIONS

if TYPE_CHECKING:
    from build_layer.prover_pool import ProverLease


class ProvingSystemRegistry:
    """
    Maps an allow-listed snarkjs version to a handler factory.

    Resolved once per build; the resulting handler is passed explicitly
    through the pipeline.
    """

    def __init__(self):
        self._factories: dict[
            str, Callable[[Optional["ProverLease"]], ProvingSystemHandler]
        ] = {}

    def register(
        self,
        version: str,
        factory: Callable[[Optional["ProverLease"]], ProvingSystemHandler],
    ):
        self._factories[version] = factory

    @property
    def versions(self) -> list[str]:
        return list(self._factories.keys())

    @property
    def default_version(self) -> str:
        return self.versions[0]

    def get_handler(
        self, version: str, lease: Optional["ProverLease"] = None
    ) -> ProvingSystemHandler:
        factory = self._factories.get(version)
        if factory is None:
            raise ValueError(f"Unsupported snarkjs version: {version}")
        return factory(lease)


def _snarkjs_factory(version: str):
    return lambda lease: SnarkjsHandler(version, lease=lease)


def default_registry() -> ProvingSystemRegistry:
    registry = ProvingSystemRegistry()
    for version in SNARKJS_VERSIONS:
        registry.register(version, _snarkjs_factory(version))
    return registry

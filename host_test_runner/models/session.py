"""Models for saved run configurations."""

from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator

from host_test_runner.models.base import Model
from host_test_runner.models.catalog import Grouping

DEFAULT_RESULTS_FILE = "results.xml"


class HostProduct(Model):
    """An installed version of the host application."""

    name: str = Field(..., description="Display name, e.g. 'Host 2024'")
    install_location: Path = Field(..., description="Installation directory")
    executable: str = Field(default="host.exe", description="Executable file name")

    @property
    def executable_path(self) -> Path:
        """Full path of the host executable."""
        return self.install_location / self.executable


class SessionConfig(Model):
    """Complete configuration of a run, as saved to and loaded from disk."""

    catalog_path: Path = Field(..., description="Discovery output for the assembly")
    working_directory: Path = Field(
        default=None, description="Directory the host runs in"
    )
    results_path: Path | None = Field(
        default=None, description="XML results file written by runs"
    )
    grouping: Grouping = Field(default="fixture", description="Catalog view")
    group_by_model: bool = Field(
        default=True, description="Run tests sharing a model in one batch"
    )
    continuous: bool = Field(
        default=True, description="Keep the host alive between batches"
    )
    concat: bool = Field(
        default=False, description="Append to the results file across runs"
    )
    timeout: float = Field(default=120.0, gt=0, description="Per-test timeout (s)")
    debug: bool = Field(default=False, description="Ask the host to run in debug")
    additional_resolution_directories: Sequence[Path] = Field(
        default_factory=list,
        description="Extra directories the host searches for dependencies",
    )
    products: Sequence[HostProduct] = Field(
        default_factory=list, description="Known host installations"
    )
    host_path: Path | None = Field(default=None, description="Selected host")
    journal_sample: Path | None = Field(
        default=None, description="Template used when exporting journals"
    )
    selection: Sequence[str] = Field(
        default_factory=lambda: ["*"],
        description="Glob patterns over qualified names of tests to run",
    )

    @model_validator(mode="before")
    @classmethod
    def _infer_paths(cls, data: Any) -> Any:
        """Infer working directory and results path from the catalog path."""
        if not isinstance(data, dict) or data.get("catalog_path") is None:
            return data
        data = dict(data)
        if data.get("working_directory") is None:
            data["working_directory"] = Path(data["catalog_path"]).parent
        if "results_path" not in data:
            data["results_path"] = (
                Path(data["working_directory"]) / DEFAULT_RESULTS_FILE
            )
        return data


def select_product(session: SessionConfig, index: int) -> SessionConfig:
    """Return a copy of the session using the product at ``index`` as host."""
    if not 0 <= index < len(session.products):
        raise IndexError(f"No host product at index {index}")
    product = session.products[index]
    return session.model_copy(update={"host_path": product.executable_path})


def product_index(session: SessionConfig) -> int:
    """Index of the product the selected host belongs to, or -1."""
    if session.host_path is None:
        return -1
    for index, product in enumerate(session.products):
        if product.install_location == session.host_path.parent:
            return index
    return -1

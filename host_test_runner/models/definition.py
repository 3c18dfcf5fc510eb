"""Models for test catalogs loaded from discovery output files."""

from collections.abc import Sequence

from pydantic import Field

from host_test_runner.models.base import Model


class TestCaseDefinition(Model):
    """A single discovered test."""

    __test__ = False

    name: str = Field(..., description="Test method name")
    fixture: str = Field(..., description="Fixture (class) the test belongs to")
    category: str = Field(
        default="Uncategorized", description="Category used by the category view"
    )
    model: str | None = Field(
        default=None,
        description="Data file the host must open (relative to the working dir)",
    )


class AssemblyDefinition(Model):
    """A discovered test assembly and its tests."""

    path: str = Field(..., description="On-disk path the tests were discovered in")
    tests: Sequence[TestCaseDefinition] = Field(
        default_factory=list, description="Tests in discovery order"
    )


class CatalogDefinition(Model):
    """Complete discovery output loaded from a catalog file."""

    version: str = Field(..., description="Catalog schema version")
    assemblies: Sequence[AssemblyDefinition] = Field(
        default_factory=list, description="Discovered assemblies"
    )

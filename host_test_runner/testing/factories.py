"""Test factories for generating test data."""

from pathlib import Path

from polyfactory import Use
from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory

from host_test_runner.models.catalog import TestNode
from host_test_runner.models.definition import (
    AssemblyDefinition,
    CatalogDefinition,
    TestCaseDefinition,
)
from host_test_runner.models.result import TestOutcome


class TestOutcomeFactory(DataclassFactory[TestOutcome]):
    """Factory for TestOutcome."""

    __test__ = False
    __model__ = TestOutcome

    status = "success"
    model = None
    message = None
    stack_trace = None


class TestNodeFactory(DataclassFactory[TestNode]):
    """Factory for selected, not yet run TestNode."""

    __test__ = False
    __model__ = TestNode

    assembly_path = Use(lambda: Path("Tests.dll"))
    model_path = None
    should_run = True
    status = "none"
    message = None
    stack_trace = None
    duration = 0.0


class TestCaseDefinitionFactory(ModelFactory[TestCaseDefinition]):
    """Factory for TestCaseDefinition."""

    __test__ = False

    model = None


class AssemblyDefinitionFactory(ModelFactory[AssemblyDefinition]):
    """Factory for AssemblyDefinition."""

    tests = Use(list)


class CatalogDefinitionFactory(ModelFactory[CatalogDefinition]):
    """Factory for CatalogDefinition."""

    assemblies = Use(list)

"""Load test catalogs produced by the external discovery step."""

import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from host_test_runner.models.catalog import AssemblyNode, Catalog, TestNode
from host_test_runner.models.definition import CatalogDefinition
from host_test_runner.models.session import SessionConfig

log = logging.getLogger(__name__)


async def load_catalog_definition(catalog_path: Path) -> CatalogDefinition:
    """Load and validate a catalog file.

    Args:
        catalog_path: Path to the catalog YAML file

    Returns:
        Parsed catalog definition

    Raises:
        FileNotFoundError: If the catalog file doesn't exist
        ValueError: If the file is empty, not valid YAML or fails validation

    """
    if not catalog_path.is_file():
        raise FileNotFoundError(f"Catalog file not found: {catalog_path}")

    content = await asyncio.to_thread(catalog_path.read_text, encoding="utf-8")

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {catalog_path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty catalog file: {catalog_path}")

    try:
        return CatalogDefinition.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid catalog schema in {catalog_path}: {e}") from e


def build_catalog(definition: CatalogDefinition, working_directory: Path) -> Catalog:
    """Build the mutable catalog tree from a definition.

    Model paths are resolved relative to the working directory.
    """
    assemblies: list[AssemblyNode] = []
    for assembly_def in definition.assemblies:
        assembly_path = Path(assembly_def.path)
        assembly = AssemblyNode(path=assembly_path)
        for test_def in assembly_def.tests:
            model_path = (
                working_directory / test_def.model if test_def.model else None
            )
            assembly.tests.append(
                TestNode(
                    name=test_def.name,
                    fixture=test_def.fixture,
                    category=test_def.category,
                    assembly_path=assembly_path,
                    model_path=model_path,
                )
            )
        assemblies.append(assembly)

    log.info(
        "Loaded %d test(s) from %d assembly(ies)",
        sum(len(a.tests) for a in assemblies),
        len(assemblies),
    )
    return Catalog(assemblies=assemblies)


async def load_selected_catalog(session: SessionConfig) -> Catalog:
    """Load the session's catalog and apply its selection."""
    definition = await load_catalog_definition(session.catalog_path)
    catalog = build_catalog(definition, session.working_directory)
    catalog.select(session.selection)
    return catalog

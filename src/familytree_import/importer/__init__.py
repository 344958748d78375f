"""Commit previews to family-tree storage."""

from familytree_import.importer.importer import (
    GedcomImporter,
    ImportPlan,
    build_relationships_from_families,
    map_person_to_schema,
    map_sex_to_gender,
    prepare_import_data,
)

__all__ = [
    "GedcomImporter",
    "ImportPlan",
    "build_relationships_from_families",
    "map_person_to_schema",
    "map_sex_to_gender",
    "prepare_import_data",
]

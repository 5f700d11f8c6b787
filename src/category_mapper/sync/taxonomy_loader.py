"""
taxonomy_loader.py

Reads a taxonomy snapshot file (the categories.json shipped with a taxonomy
release) and validates it into a TaxonomySnapshot.

Downloading and version checks happen elsewhere; this module only parses
what is already on disk.
"""

import json
import sys
from pathlib import Path

from pydantic import ValidationError

from category_mapper.exception import CustomException
from category_mapper.logger import get_logger
from category_mapper.models import TaxonomySnapshot

logger = get_logger(__name__)


def parse_taxonomy(data: dict) -> TaxonomySnapshot:
    """Validate an already-decoded snapshot payload."""
    try:
        snapshot = TaxonomySnapshot.model_validate(data)
    except ValidationError as e:
        logger.error(f"Taxonomy snapshot failed validation: {e.error_count()} errors.")
        raise CustomException(e, sys)

    if not snapshot.verticals:
        logger.warning(f"Taxonomy snapshot {snapshot.version} contains no verticals.")
    return snapshot


def load_taxonomy_file(path) -> TaxonomySnapshot:
    """Load and validate a taxonomy JSON file."""
    file_path = Path(path)
    if not file_path.exists():
        msg = f"Taxonomy file not found: {file_path}"
        logger.error(msg)
        raise CustomException(msg)

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Taxonomy file {file_path} is not valid JSON.")
        raise CustomException(e, sys)

    snapshot = parse_taxonomy(data)
    logger.info(f"Read taxonomy snapshot {snapshot.version} from {file_path}.")
    return snapshot

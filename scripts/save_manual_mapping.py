import argparse
import sys

from dotenv import load_dotenv

from category_mapper.agents.mapper import store_manual_mapping
from category_mapper.dbs.mapping_cache import MappingCache, build_mapping_store
from category_mapper.dbs.taxonomy_index import TaxonomyIndex
from category_mapper.logger import get_logger
from category_mapper.utils.load_config import load_config_file

load_dotenv()
logger = get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Store a curated mapping (provenance 'manual').")
    parser.add_argument("input_text", help="Exact input string to map")
    parser.add_argument("category_id", help="Taxonomy category id, bare (el-1) or gid form")
    parser.add_argument("--confidence", choices=["high", "medium", "low"], default="low")
    args = parser.parse_args(argv)

    try:
        config = load_config_file()
        taxonomy = TaxonomyIndex.from_file(config["paths"]["taxonomy_file"])
        cache = MappingCache(build_mapping_store(config))
        record = store_manual_mapping(taxonomy, cache, args.input_text, args.category_id, confidence=args.confidence)
    except Exception as e:
        logger.error(f"Failed to save manual mapping: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"SUCCESS: '{record.key}' -> {record.category_id} ({record.full_name})")


if __name__ == "__main__":
    main()

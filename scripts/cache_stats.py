import sys

from dotenv import load_dotenv

from category_mapper.dbs.mapping_cache import MappingCache, build_mapping_store
from category_mapper.logger import get_logger
from category_mapper.utils.load_config import load_config_file

load_dotenv()
logger = get_logger(__name__)


def show_stats():
    try:
        cache = MappingCache(build_mapping_store(load_config_file()))
        stats = cache.statistics()
    except Exception as e:
        logger.error(f"Failed to read mapping statistics: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"Total mappings: {stats.total}")
    print("By confidence:")
    for tier in ("high", "medium", "low"):
        print(f"  {tier:<7} {stats.by_confidence.get(tier, 0)}")
    print("By provenance:")
    for source, count in sorted(stats.by_provenance.items()):
        print(f"  {source:<7} {count}")


if __name__ == "__main__":
    show_stats()

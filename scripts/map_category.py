import argparse
import sys

from dotenv import load_dotenv

from category_mapper.agents.mapper import CategoryMapper
from category_mapper.logger import get_logger

# Load env vars (API key, DB conn)
load_dotenv()
logger = get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Map category paths or product titles onto the taxonomy.")
    parser.add_argument("inputs", nargs="+", help="Category paths or product titles to map")
    parser.add_argument("--refresh", action="store_true", help="Ignore cached mappings and re-navigate")
    args = parser.parse_args(argv)

    try:
        mapper = CategoryMapper()
    except Exception as e:
        logger.error(f"Failed to start mapper: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    failed = False
    for text in args.inputs:
        try:
            result = mapper.map(text, refresh=args.refresh)
        except Exception as e:
            failed = True
            print(f"Input: '{text}' - ERROR: {e}")
            continue

        print(f"Input: '{text}'")
        print(f"  Category:   {result.category_id}")
        print(f"  Full name:  {result.full_name}")
        print(f"  Confidence: {result.confidence}")
        print(f"  Cached:     {result.cached}")
        if result.turns is not None:
            print(f"  Turns:      {result.turns}")
        print("-" * 30)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()

import argparse
import asyncio
import json
import logging
import pathlib
import sys

from dotenv import find_dotenv, load_dotenv

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from reel2recipe.app.config import get_settings
from reel2recipe.app.deps import build_pipeline
from reel2recipe.services.errors import ServiceError
from reel2recipe.services.types import StageAttempt


def print_progress(attempt: StageAttempt) -> None:
    suffix = f" ({attempt.failure_reason})" if attempt.failure_reason else ""
    print(f"[{attempt.stage.value}] {attempt.status.value}{suffix}")


async def run_extract(url: str, mode: str) -> int:
    print("\n===", url)
    pipeline = build_pipeline(get_settings())
    try:
        recipe = await pipeline.extract_recipe(url, mode, on_progress=print_progress)
    except ServiceError as error:
        print("error:", json.dumps(error.to_dict(), indent=2))
        return 1

    print("title:", recipe.title)
    print("source:", recipe.source)
    print("thumbnail:", recipe.thumbnail)
    print("ingredients:")
    for item in recipe.ingredients:
        print("  -", item)
    print("instructions:")
    for number, step in enumerate(recipe.instructions, start=1):
        print(f"  {number}. {step}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Extract a recipe from a short-form video URL")
    parser.add_argument("url", nargs="+")
    parser.add_argument("--mode", choices=["fast", "full"], default="full")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(dotenv_path=env_path)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    failures = 0
    for url in args.url:
        failures += asyncio.run(run_extract(url, args.mode))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()

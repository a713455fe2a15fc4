"""
Generate a comic strip from the command line.

Usage:
    python generate_comic.py "A knight and a cat share coffee." knight.png cat.png
    python generate_comic.py "..." hero.jpg --panels 4 --no-text
    python generate_comic.py "..." hero.jpg --best-effort --output output/comics

Writes comic-panel-N.jpeg files and ai-comic-strip.jpeg to a timestamped
folder under the output directory.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(name)s - %(message)s", stream=sys.stdout)

from comic_strip import CharacterImage, ComicStripError, ComicStripGenerator, FailurePolicy
from comic_strip.models import GenerationRequest
from comic_strip.strip_assembler import StripAssembler

DEFAULT_OUTPUT = "output/comics"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate a comic strip from a story")
    parser.add_argument("story", help="The story to illustrate")
    parser.add_argument("characters", nargs="+", help="Character reference images (1-3)")
    parser.add_argument("--panels", type=int, default=3, help="Number of panels (1-6)")
    parser.add_argument("--no-text", action="store_true", help="Wordless strip, no captions")
    parser.add_argument("--best-effort", action="store_true",
                        help="Keep successful panels when some fail")
    parser.add_argument("--output", default=DEFAULT_OUTPUT, help="Output root folder")
    return parser.parse_args(argv)


async def run(args) -> int:
    characters = [CharacterImage.from_path(p) for p in args.characters]
    policy = FailurePolicy.BEST_EFFORT if args.best_effort else FailurePolicy.FAIL_FAST
    generator = ComicStripGenerator(failure_policy=policy)

    request = GenerationRequest(
        story=args.story,
        characters=tuple(characters),
        num_panels=args.panels,
        include_text=not args.no_text,
    )

    print("\n" + "=" * 60)
    print(f"Generating {args.panels}-panel strip from {len(characters)} character(s)...")
    print("=" * 60)

    result = await generator.generate(
        request,
        on_progress=lambda stage, details: print(f"  [{stage}] {details}"),
    )

    output_dir = Path(args.output) / datetime.now().strftime("strip_%Y%m%d_%H%M%S")
    assembler = StripAssembler()
    saved = assembler.save_panels(result.panels, str(output_dir))

    strip_path = output_dir / "ai-comic-strip.jpeg"
    strip_path.write_bytes(assembler.compose_strip(result.panels))

    print("\n" + "=" * 60)
    for index, (prompt, panel) in enumerate(zip(result.prompts, result.panels), 1):
        status = "ok" if panel.ok else f"FAILED ({panel.error})"
        print(f"Panel {index}: {status}")
        print(f"  Prompt: {prompt.image_prompt[:120]}...")
        if panel.text:
            print(f"  Text: \"{panel.text}\"")
    print(f"\nPANELS SAVED: {len(saved)}")
    print(f"STRIP: {strip_path}")
    print("=" * 60)
    return 0 if not result.failed_panels else 2


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ComicStripError as e:
        print(f"\nComic generation failed: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

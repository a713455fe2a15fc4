"""
Comic Strip - AI-driven comic strip generation.

Story + character reference images -> consistent multi-panel comic strip:
1. Panel script: one shared art style and fixed character descriptors,
   spliced into every panel's image prompt
2. Panel images: one concurrent image call per panel, order preserved

Usage:
    from comic_strip import ComicStripGenerator, CharacterImage

    generator = ComicStripGenerator()
    panels = await generator.generate_comic_strip(
        story="A knight and a cat share coffee.",
        characters=[CharacterImage.from_path("knight.png")],
        include_text=True,
        num_panels=3,
    )
"""

from comic_strip.comic_generator import ComicStripGenerator
from comic_strip.errors import (
    ComicStripError,
    ImageGenerationError,
    SchemaMismatchError,
    UpstreamError,
    ValidationError,
)
from comic_strip.gemini_client import ComicProvider, GeminiClient
from comic_strip.models import (
    CharacterImage,
    ComicPanel,
    FailurePolicy,
    GenerationRequest,
    PanelPrompt,
    PanelPromptSchema,
)

__all__ = [
    "ComicStripGenerator",
    "ComicProvider",
    "GeminiClient",
    "CharacterImage",
    "ComicPanel",
    "FailurePolicy",
    "GenerationRequest",
    "PanelPrompt",
    "PanelPromptSchema",
    "ComicStripError",
    "ValidationError",
    "SchemaMismatchError",
    "ImageGenerationError",
    "UpstreamError",
]

"""
Comic Strip - Main Orchestrator.

ComicStripGenerator ties the stages together:
  Request -> Validate -> Panel Script (text model) -> Panel Images (image model)

The script stage must finish before any image call is made; its panel count
and order are what the image stage fans out over.
"""

import logging
from typing import Callable, Optional, Sequence

from comic_strip import config
from comic_strip.gemini_client import ComicProvider, GeminiClient
from comic_strip.models import (
    CharacterImage,
    ComicPanel,
    FailurePolicy,
    GenerationRequest,
    GenerationResult,
)
from comic_strip.panel_renderer import PanelRenderer
from comic_strip.prompt_synthesizer import PromptSynthesizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict], None]


class ComicStripGenerator:
    """
    End-to-end comic strip generator.

    Usage:
        generator = ComicStripGenerator()
        panels = await generator.generate_comic_strip(
            story="A knight and a cat share coffee.",
            characters=[CharacterImage.from_path("knight.png")],
            include_text=True,
            num_panels=3,
        )
    """

    def __init__(
        self,
        provider: Optional[ComicProvider] = None,
        failure_policy: Optional[FailurePolicy] = None,
    ):
        self.provider = provider if provider is not None else GeminiClient()
        if failure_policy is None:
            failure_policy = FailurePolicy.parse(config.FAILURE_POLICY)
        self.synthesizer = PromptSynthesizer(self.provider)
        self.renderer = PanelRenderer(self.provider, failure_policy=failure_policy)

    @property
    def failure_policy(self) -> FailurePolicy:
        return self.renderer.failure_policy

    async def generate_comic_strip(
        self,
        story: str,
        characters: Sequence[CharacterImage],
        include_text: bool,
        num_panels: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[ComicPanel]:
        """Generate a strip and return just its panels, in order."""
        result = await self.generate(
            GenerationRequest(
                story=story,
                characters=tuple(characters),
                num_panels=num_panels,
                include_text=include_text,
            ),
            on_progress=on_progress,
        )
        return result.panels

    async def generate(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """
        Run the full pipeline for one request.

        Args:
            request: Story, characters, panel count and text flag
            on_progress: Optional callback(stage: str, details: dict)

        Returns:
            GenerationResult with prompts and panels populated

        Raises:
            ValidationError: before any model call
            SchemaMismatchError / ImageGenerationError / UpstreamError
        """
        # === Stage 0: Validate ===
        self._progress(on_progress, "validate", {"num_panels": request.num_panels})
        request.validate()
        result = GenerationResult(request=request)

        logger.info("=" * 60)
        logger.info(f"COMIC STRIP: {request.story.strip()[:60]}")
        logger.info(
            f"  Panels: {request.num_panels} | Characters: {len(request.characters)} "
            f"| Text: {'on' if request.include_text else 'off'}"
        )
        logger.info("=" * 60)

        # === Stage 1: Panel Script ===
        self._progress(on_progress, "script", {"num_panels": request.num_panels})
        result.prompts = await self.synthesizer.synthesize(
            story=request.story,
            characters=request.characters,
            include_text=request.include_text,
            num_panels=request.num_panels,
        )
        result.log(f"Panel script generated: {len(result.prompts)} prompts")

        # === Stage 2: Panel Images ===
        self._progress(on_progress, "images", {"panel_count": len(result.prompts)})
        result.panels = await self.renderer.render(result.prompts, request.include_text)

        panels_ok = sum(1 for p in result.panels if p.ok)
        for index in result.failed_panels:
            result.log(f"Panel {index + 1} FAILED: {result.panels[index].error}")
        result.log(f"Images: {panels_ok}/{len(result.panels)} panels generated")

        # === Done ===
        self._progress(on_progress, "complete", {
            "panels_ok": panels_ok,
            "panel_count": len(result.panels),
        })

        logger.info("=" * 60)
        logger.info("COMIC STRIP COMPLETE")
        logger.info(f"  Panels: {panels_ok}/{len(result.panels)}")
        logger.info("=" * 60)

        return result

    def _progress(self, callback: Optional[ProgressCallback], stage: str, details: dict):
        """Report progress if callback is set."""
        if callback:
            try:
                callback(stage, details)
            except Exception as e:
                logger.warning(f"Progress callback failed at '{stage}': {e}")

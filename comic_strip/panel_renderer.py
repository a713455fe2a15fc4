"""
Comic Strip - Panel Renderer.

Generates one image per panel prompt. Every panel is independent, so all
image calls are issued at once and joined; results are re-associated with
their panel index, never with completion order.
"""

import asyncio
import logging
from typing import Sequence

from comic_strip.errors import ComicStripError, ImageGenerationError, UpstreamError
from comic_strip.gemini_client import ComicProvider
from comic_strip.models import (
    NO_TEXT_SUFFIX,
    PANEL_ASPECT_RATIO,
    PANEL_MIME_TYPE,
    ComicPanel,
    FailurePolicy,
    PanelPrompt,
)

logger = logging.getLogger(__name__)


class PanelRenderer:
    """Renders PanelPrompts into ComicPanels via concurrent image calls."""

    def __init__(
        self,
        provider: ComicProvider,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
    ):
        self.provider = provider
        self.failure_policy = failure_policy

    def build_image_prompt(self, prompt: PanelPrompt, include_text: bool) -> str:
        """Final image instruction for one panel."""
        if include_text:
            return prompt.image_prompt
        return prompt.image_prompt + NO_TEXT_SUFFIX

    async def render(
        self,
        prompts: Sequence[PanelPrompt],
        include_text: bool,
    ) -> list[ComicPanel]:
        """
        Render every panel concurrently.

        Args:
            prompts: Panel prompts in panel order
            include_text: Whether captions are carried into the panels

        Returns:
            ComicPanels in the same order as prompts

        Raises:
            ImageGenerationError: a panel came back with zero images
            UpstreamError: a provider image call failed
            Under FAIL_FAST the first failure observed is raised and the
            still-running panel calls are cancelled. Under BEST_EFFORT an
            error is raised only when every panel failed.
        """
        logger.info(
            f"Rendering {len(prompts)} panels concurrently "
            f"(policy: {self.failure_policy.value})"
        )
        calls = [
            self._render_panel(index, prompt, include_text)
            for index, prompt in enumerate(prompts)
        ]

        if self.failure_policy is FailurePolicy.FAIL_FAST:
            tasks = [asyncio.ensure_future(call) for call in calls]
            try:
                panels = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            return list(panels)

        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        panels = []
        errors = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, ComicPanel):
                panels.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            errors.append(outcome)
            logger.error(f"Panel {index + 1} failed: {outcome}")
            panels.append(ComicPanel(
                image="",
                text=self._caption(prompts[index], include_text),
                error=str(outcome) or type(outcome).__name__,
            ))

        if errors and len(errors) == len(outcomes):
            raise errors[0]

        if errors:
            logger.warning(f"{len(errors)}/{len(outcomes)} panels failed, returning partial strip")
        return panels

    async def _render_panel(
        self,
        index: int,
        prompt: PanelPrompt,
        include_text: bool,
    ) -> ComicPanel:
        """Generate the image for a single panel."""
        final_prompt = self.build_image_prompt(prompt, include_text)
        logger.info(f"Generating panel {index + 1}: {final_prompt[:60]}...")

        try:
            images = await self.provider.generate_image(
                final_prompt,
                number_of_images=1,
                output_mime_type=PANEL_MIME_TYPE,
                aspect_ratio=PANEL_ASPECT_RATIO,
            )
        except ComicStripError:
            raise
        except Exception as e:
            raise UpstreamError(f"Image generation failed for panel {index + 1}: {e}") from e

        if not images:
            raise ImageGenerationError(
                f"Image generation failed for panel {index + 1}.",
                panel_index=index,
            )

        logger.info(f"Panel {index + 1} image generated ({len(images[0])} bytes)")
        return ComicPanel.from_image_bytes(
            images[0],
            text=self._caption(prompt, include_text),
        )

    def _caption(self, prompt: PanelPrompt, include_text: bool) -> str:
        if not include_text:
            return ""
        return prompt.panel_text or ""

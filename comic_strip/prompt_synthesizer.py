"""
Comic Strip - Prompt Synthesizer.

Takes a story and character reference images and asks a multi-modal model
for a panel-by-panel script: one self-contained image prompt per panel,
plus a caption when text is enabled.

Consistency comes from this stage. The model first derives one shared art
style and one fixed descriptor per character, then reuses them verbatim in
every panel prompt.
"""

import json
import logging
from typing import Sequence

from comic_strip.errors import ComicStripError, SchemaMismatchError, UpstreamError
from comic_strip.gemini_client import ComicProvider
from comic_strip.models import CharacterImage, PanelPrompt, PanelPromptSchema

logger = logging.getLogger(__name__)

PANEL_SCRIPT_PROMPT = """
You are a creative and funny comic book writer with an expert eye for art styles and character details. Your task is to generate prompts for a {num_panels}-panel comic strip.

**Analysis Phase:**
1.  **Art Style:** First, CAREFULLY ANALYZE the art style shared across all provided character images. Identify key features like line work, coloring, shading, and overall mood. Let's call this the "source art style".
2.  **Character Details:** Next, for each character image provided ({character_labels}), create a concise but detailed description of their key visual features (e.g., "Character 1 is a male with short, spiky blonde hair, wearing round glasses and a blue hoodie."). You will use these exact descriptions later.

**Generation Phase:**
Based on the story below, create a series of {num_panels} detailed image prompts.

**Story:** "{story}"

**Instructions for EACH of the {num_panels} panels:**
1.  **Start with the Art Style:** Every image prompt MUST begin with a description of the "source art style" you identified. This is non-negotiable for visual consistency.
2.  **Incorporate Character Details:** When a character appears in a panel, you MUST use the detailed description you created for them in the Analysis Phase. For instance, if the panel includes Character 1, the prompt should say "...featuring Character 1 (male with short, spiky blonde hair, wearing round glasses and a blue hoodie)...". This ensures characters look the same in every panel.
3.  **Describe the Scene:** Detail the background, character actions, expressions, and composition based on the story for that specific panel.

{text_instruction}

Your final output must be a JSON array of exactly {num_panels} objects that strictly follows the provided schema. Do not include any extra text, explanations, or markdown formatting before or after the JSON.
"""

CAPTION_INSTRUCTION = (
    'For each panel, also create a "panel_text" with short, punchy narration or '
    "dialogue that fits in a comic book caption or speech bubble."
)

WORDLESS_INSTRUCTION = (
    'CRITICAL: Do NOT generate any "panel_text". The comic strip must be purely '
    "visual and wordless. The image prompts should describe scenes without any "
    "need for text, speech bubbles, letters, or sound effects."
)


class PromptSynthesizer:
    """Turns a story + character images into an ordered list of PanelPrompts."""

    def __init__(self, provider: ComicProvider):
        self.provider = provider

    def build_instruction(
        self,
        story: str,
        character_count: int,
        include_text: bool,
        num_panels: int,
    ) -> str:
        """Fill the panel script template for one request."""
        labels = ", ".join(f'"Character {i}"' for i in range(1, character_count + 1))
        return PANEL_SCRIPT_PROMPT.format(
            num_panels=num_panels,
            character_labels=labels,
            story=story.strip(),
            text_instruction=CAPTION_INSTRUCTION if include_text else WORDLESS_INSTRUCTION,
        ).strip()

    async def synthesize(
        self,
        story: str,
        characters: Sequence[CharacterImage],
        include_text: bool,
        num_panels: int,
    ) -> list[PanelPrompt]:
        """
        Generate exactly num_panels panel prompts.

        Args:
            story: The user's story text
            characters: Character reference images, in upload order
            include_text: Whether each panel gets a caption
            num_panels: Number of panels to produce

        Returns:
            PanelPrompts in panel order

        Raises:
            SchemaMismatchError: unparseable output or wrong panel count
        """
        schema = PanelPromptSchema.for_request(include_text)
        instruction = self.build_instruction(story, len(characters), include_text, num_panels)

        logger.info(
            f"Synthesizing {num_panels} panel prompts "
            f"({schema.value}, {len(characters)} character(s))"
        )
        try:
            raw_text = await self.provider.synthesize_text(
                instruction,
                list(characters),
                response_mime_type="application/json",
                response_schema=schema.response_schema(num_panels),
            )
        except ComicStripError:
            raise
        except Exception as e:
            raise UpstreamError(f"Panel script generation failed: {e}") from e

        prompts = self.parse_prompts(raw_text, schema)
        if len(prompts) != num_panels:
            raise SchemaMismatchError(
                f"Expected {num_panels} panel prompts, but received {len(prompts)}."
            )

        logger.info(f"Panel script ready: {len(prompts)} prompts")
        return prompts

    def parse_prompts(self, raw_text: str, schema: PanelPromptSchema) -> list[PanelPrompt]:
        """Parse and check the model's JSON array against the schema variant."""
        try:
            data = json.loads(self._extract_json(raw_text))
        except json.JSONDecodeError as e:
            logger.warning(f"Unparseable panel script: {raw_text[:200]}")
            raise SchemaMismatchError(f"Panel prompts were not valid JSON: {e}")

        if not isinstance(data, list) or not data:
            raise SchemaMismatchError("Parsed JSON is not a valid array of panel prompts.")

        prompts = []
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise SchemaMismatchError(f"Panel {index + 1} is not a JSON object.")

            image_prompt = item.get("image_prompt")
            if not isinstance(image_prompt, str) or not image_prompt.strip():
                raise SchemaMismatchError(f"Panel {index + 1} has no image_prompt.")

            panel_text = None
            if schema is PanelPromptSchema.WITH_CAPTION:
                value = item.get("panel_text")
                # A missing caption degrades to an empty one downstream
                if isinstance(value, str) and value.strip():
                    panel_text = value.strip()

            prompts.append(PanelPrompt(image_prompt=image_prompt.strip(), panel_text=panel_text))

        return prompts

    def _extract_json(self, text: str) -> str:
        """Extract JSON from model response, handling markdown fences."""
        text = text.strip()
        if "```json" in text:
            text = text.split("```json", 1)[1]
            text = text.rsplit("```", 1)[0]
        elif "```" in text:
            text = text.split("```", 1)[1]
            text = text.rsplit("```", 1)[0]
        return text.strip()

"""
Comic Strip - Data models.

Dataclasses for one generation request:
CharacterImage + story -> GenerationRequest -> PanelPrompt -> ComicPanel.
"""

import base64
import binascii
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from comic_strip.errors import ValidationError

# Request bounds (mirrors the upload form)
MIN_STORY_LENGTH = 10
MIN_PANELS = 1
MAX_PANELS = 6
MAX_CHARACTERS = 3

# Fixed image output settings
PANEL_ASPECT_RATIO = "16:9"
PANEL_MIME_TYPE = "image/jpeg"

# Appended to every image prompt in wordless mode
NO_TEXT_SUFFIX = ", wordless, no text, no speech bubbles, no letters"


class FailurePolicy(Enum):
    """What the renderer does when one panel's image call fails."""

    FAIL_FAST = "fail_fast"        # Any failure aborts the whole strip
    BEST_EFFORT = "best_effort"    # Failed panels are flagged, others kept

    @classmethod
    def parse(cls, value: str) -> "FailurePolicy":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown failure policy '{value}' "
                f"(expected one of: {', '.join(p.value for p in cls)})"
            ) from None


class PanelPromptSchema(Enum):
    """
    Output contract for the text model, picked once per request.

    WITH_CAPTION requires both image_prompt and panel_text on every item.
    CAPTIONLESS requires only image_prompt and does not declare panel_text.
    """

    WITH_CAPTION = "with_caption"
    CAPTIONLESS = "captionless"

    @classmethod
    def for_request(cls, include_text: bool) -> "PanelPromptSchema":
        return cls.WITH_CAPTION if include_text else cls.CAPTIONLESS

    @property
    def required_fields(self) -> list[str]:
        if self is PanelPromptSchema.WITH_CAPTION:
            return ["image_prompt", "panel_text"]
        return ["image_prompt"]

    def response_schema(self, num_panels: int) -> dict:
        """JSON response schema for an array of num_panels panel objects."""
        properties = {
            "image_prompt": {
                "type": "STRING",
                "description": (
                    "A detailed, dynamic, and visually rich prompt for an AI image "
                    "generator, including character descriptions and art style."
                ),
            },
        }
        if self is PanelPromptSchema.WITH_CAPTION:
            properties["panel_text"] = {
                "type": "STRING",
                "description": (
                    "The short, punchy narration or dialogue for this panel. "
                    "Should fit in a comic book caption."
                ),
            }

        return {
            "type": "ARRAY",
            "minItems": num_panels,
            "maxItems": num_panels,
            "items": {
                "type": "OBJECT",
                "properties": properties,
                "required": self.required_fields,
            },
        }


@dataclass(frozen=True)
class CharacterImage:
    """An uploaded character reference image."""
    data: bytes
    mime_type: str

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> "CharacterImage":
        """Decode a base64 payload (a full data URI is accepted too)."""
        if not isinstance(encoded, str) or not encoded:
            raise ValidationError("Character image data must be a non-empty base64 string.")
        if not isinstance(mime_type, str) or not mime_type.startswith("image/"):
            raise ValidationError(f"Unsupported character image type: {mime_type!r}")

        if encoded.startswith("data:"):
            encoded = encoded.split(",", 1)[-1]
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Character image data is not valid base64.")
        if not data:
            raise ValidationError("Character image data is empty.")
        return cls(data=data, mime_type=mime_type)

    @classmethod
    def from_path(cls, path: str | Path) -> "CharacterImage":
        """Load a reference image from disk, guessing its MIME type."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type or not mime_type.startswith("image/"):
            raise ValidationError(f"Not an image file: {path}")
        return cls(data=path.read_bytes(), mime_type=mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class GenerationRequest:
    """The validated input bundle for one comic strip."""
    story: str
    characters: tuple[CharacterImage, ...]
    num_panels: int
    include_text: bool = True

    def validate(self) -> "GenerationRequest":
        """Raise ValidationError if any field is out of bounds."""
        if not isinstance(self.story, str) or not self.story.strip():
            raise ValidationError("A story is required.")
        if len(self.story.strip()) < MIN_STORY_LENGTH:
            raise ValidationError(
                f"Please write a short story (at least {MIN_STORY_LENGTH} characters)."
            )
        if not self.characters:
            raise ValidationError("Please upload at least one character image.")
        if not all(isinstance(c, CharacterImage) for c in self.characters):
            raise ValidationError("Characters must be CharacterImage instances.")
        if (
            isinstance(self.num_panels, bool)
            or not isinstance(self.num_panels, int)
            or not MIN_PANELS <= self.num_panels <= MAX_PANELS
        ):
            raise ValidationError(
                f"Panel count must be a whole number between {MIN_PANELS} and {MAX_PANELS}."
            )
        return self

    @property
    def schema(self) -> PanelPromptSchema:
        return PanelPromptSchema.for_request(self.include_text)


@dataclass(frozen=True)
class PanelPrompt:
    """One synthesized image instruction, plus caption in text mode."""
    image_prompt: str
    panel_text: Optional[str] = None


@dataclass
class ComicPanel:
    """A rendered panel: image data URI and caption."""
    image: str
    text: str = ""
    error: Optional[str] = None    # Set only for failed panels (best-effort)

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.image)

    @classmethod
    def from_image_bytes(
        cls,
        data: bytes,
        text: str = "",
        mime_type: str = PANEL_MIME_TYPE,
    ) -> "ComicPanel":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(image=f"data:{mime_type};base64,{encoded}", text=text)

    def to_dict(self) -> dict:
        """Serialize to the response wire shape."""
        data = {"image": self.image, "text": self.text}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class GenerationResult:
    """Everything produced by one run, kept for logging and the CLI."""
    request: GenerationRequest
    prompts: list[PanelPrompt] = field(default_factory=list)
    panels: list[ComicPanel] = field(default_factory=list)
    generation_log: list[str] = field(default_factory=list)

    def log(self, message: str):
        """Append to generation log."""
        self.generation_log.append(message)

    @property
    def failed_panels(self) -> list[int]:
        return [i for i, p in enumerate(self.panels) if not p.ok]

"""
Comic Strip Web API - Flask Application

Thin HTTP boundary around ComicStripGenerator:
- POST /api/generate  story + character images -> {panels: [{image, text}]}
- POST /api/strip     panels -> single composite JPEG for download
- GET  /api/health    liveness check

Errors are always JSON: {"error": "..."} with 400 for bad requests,
405 for wrong methods and 500 for generation failures.
"""

import asyncio
import io
import logging
from typing import Optional

from flask import Flask, current_app, jsonify, request, send_file

from comic_strip import ComicStripGenerator
from comic_strip.errors import ComicStripError, ValidationError
from comic_strip.models import MAX_CHARACTERS, CharacterImage, ComicPanel
from comic_strip.strip_assembler import StripAssembler

logger = logging.getLogger(__name__)

GENERATOR_KEY = "comic_generator"


def create_app(generator: Optional[ComicStripGenerator] = None) -> Flask:
    """Build the Flask app. A generator can be injected (tests, custom providers)."""
    app = Flask(__name__)
    app.extensions[GENERATOR_KEY] = generator

    app.register_error_handler(405, _method_not_allowed)
    app.add_url_rule("/api/generate", view_func=api_generate, methods=["POST"])
    app.add_url_rule("/api/strip", view_func=api_strip, methods=["POST"])
    app.add_url_rule("/api/health", view_func=api_health, methods=["GET"])

    return app


def get_generator() -> ComicStripGenerator:
    """Return the app's generator, creating the default one on first use."""
    generator = current_app.extensions.get(GENERATOR_KEY)
    if generator is None:
        generator = ComicStripGenerator()
        current_app.extensions[GENERATOR_KEY] = generator
    return generator


def _method_not_allowed(e):
    return jsonify({"error": "Method Not Allowed"}), 405


def parse_generate_request(data) -> dict:
    """
    Check the /api/generate body and convert characters to CharacterImages.

    Story length and panel bounds are re-checked by GenerationRequest.
    """
    if not isinstance(data, dict):
        raise ValidationError("Missing required parameters.")

    story = data.get("story")
    characters = data.get("characters")
    num_panels = data.get("numPanels")

    if not story or not characters or not isinstance(characters, list) or not num_panels:
        raise ValidationError("Missing required parameters.")
    if not isinstance(story, str):
        raise ValidationError("Story must be text.")
    if isinstance(num_panels, bool) or not isinstance(num_panels, int):
        raise ValidationError("numPanels must be a whole number.")
    include_text = data.get("includeText", False)
    if not isinstance(include_text, bool):
        raise ValidationError("includeText must be true or false.")
    if len(characters) > MAX_CHARACTERS:
        raise ValidationError(f"Please upload at most {MAX_CHARACTERS} character images.")

    images = []
    for index, character in enumerate(characters):
        if not isinstance(character, dict):
            raise ValidationError(f"Character {index + 1} is malformed.")
        images.append(CharacterImage.from_base64(
            character.get("base64", ""),
            character.get("mimeType", ""),
        ))

    return {
        "story": story,
        "characters": images,
        "include_text": include_text,
        "num_panels": num_panels,
    }


def api_generate():
    """Generate a comic strip from a story and character images."""
    try:
        params = parse_generate_request(request.get_json(silent=True))
        generator = get_generator()
        panels = asyncio.run(generator.generate_comic_strip(**params))
        return jsonify({"panels": [p.to_dict() for p in panels]})

    except ValidationError as e:
        logger.warning(f"Rejected generate request: {e.message}")
        return jsonify({"error": e.message}), 400
    except ComicStripError as e:
        logger.error(f"Comic generation failed: {e.message}")
        return jsonify({"error": e.message}), 500
    except Exception as e:
        logger.exception("Unexpected error during comic generation")
        return jsonify({"error": str(e) or "An internal server error occurred."}), 500


def api_strip():
    """Assemble already-generated panels into one downloadable JPEG."""
    data = request.get_json(silent=True)
    raw_panels = data.get("panels") if isinstance(data, dict) else None
    if not raw_panels or not isinstance(raw_panels, list):
        return jsonify({"error": "No panels provided."}), 400

    panels = []
    for index, raw in enumerate(raw_panels):
        if not isinstance(raw, dict) or not isinstance(raw.get("image", ""), str):
            return jsonify({"error": f"Panel {index + 1} is malformed."}), 400
        panels.append(ComicPanel(image=raw.get("image", ""), text=str(raw.get("text") or "")))

    try:
        strip = StripAssembler().compose_strip(panels)
    except Exception as e:
        logger.exception("Strip assembly failed")
        return jsonify({"error": f"Could not assemble strip: {e}"}), 500

    return send_file(
        io.BytesIO(strip),
        mimetype="image/jpeg",
        as_attachment=True,
        download_name="ai-comic-strip.jpeg",
    )


def api_health():
    return jsonify({"status": "ok"})


app = create_app()

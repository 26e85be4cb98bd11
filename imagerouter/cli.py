from __future__ import annotations

import argparse
import hashlib
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from imagerouter.core.config.loader import load_settings
from imagerouter.core.config.models import RouterSettings
from imagerouter.core.dispatcher import ImageDispatcher
from imagerouter.core.errors import ImageRouterError, InvalidInputError
from imagerouter.core.events import EventLogger
from imagerouter.core.image_backends.models import EditRequest, GenerationRequest, ImageResult, parse_request
from imagerouter.core.image_backends.registry import BackendRegistry
from imagerouter.core.logger import setup_logging
from imagerouter.core.resilience.context import ResilienceContext
from imagerouter.core.selection import BackendSelector

logger = logging.getLogger(__name__)


def build_dispatcher(
    settings: RouterSettings,
    *,
    env: Optional[Mapping[str, str]] = None,
    event_logger: Optional[EventLogger] = None,
) -> ImageDispatcher:
    resilience = ResilienceContext.from_settings(settings)
    registry = BackendRegistry(resilience, env=env)
    return ImageDispatcher(registry, BackendSelector(), settings, event_logger=event_logger)


def save_images(result: ImageResult, output_dir: str) -> List[Dict[str, Any]]:
    os.makedirs(output_dir, exist_ok=True)
    saved: List[Dict[str, Any]] = []
    ts = int(time.time() * 1000)
    for idx, img in enumerate(result.images):
        digest = hashlib.md5(img.data).hexdigest()
        filename = f"{result.backend.lower()}-{digest}-{ts}-{idx}.{img.format or 'png'}"
        path = os.path.join(output_dir, filename)
        with open(path, "wb") as f:
            f.write(img.data)
        saved.append({"path": path, "format": img.format, "size": img.size_bytes})
    return saved


def render_markdown(data: Dict[str, Any]) -> str:
    lines = [f"# Images from {data['backend']}", ""]
    if data.get("model"):
        lines.append(f"**Model:** {data['model']}")
        lines.append("")
    for i, img in enumerate(data["images"], 1):
        lines.append(f"{i}. `{img['path']}` ({img['format']}, {img['size'] / 1024:.1f} KB)")
    if data.get("warnings"):
        lines.extend(["", "## Warnings", ""])
        lines.extend(f"- {w}" for w in data["warnings"])
    return "\n".join(lines)


def _request_fields(args: argparse.Namespace) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"prompt": args.prompt}
    for name in ("backend", "width", "height", "model", "seed", "steps", "guidance"):
        v = getattr(args, name, None)
        if v is not None:
            fields[name] = v
    if args.format:
        fields["output_format"] = args.format
    return fields


def _emit(payload: Any, markdown: bool = False) -> None:
    if markdown and isinstance(payload, dict) and "images" in payload:
        print(render_markdown(payload))
    else:
        print(json.dumps(payload, indent=2))


def _add_request_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("prompt", help="What to generate or how to edit.")
    p.add_argument("--backend", help="Backend name or 'auto'.")
    p.add_argument("--width", type=int)
    p.add_argument("--height", type=int)
    p.add_argument("--model")
    p.add_argument("--seed", type=int)
    p.add_argument("--steps", type=int)
    p.add_argument("--guidance", type=float)
    p.add_argument("--format", choices=["png", "jpeg", "webp"])
    p.add_argument("--output-dir", help="Directory for saved images (default from IMAGEROUTER_OUTPUT_DIR).")
    p.add_argument("--markdown", action="store_true", help="Print a Markdown summary instead of JSON.")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="imagerouter", description="Route image generation and editing across backends.")
    sub = ap.add_subparsers(dest="command", required=True)

    _add_request_args(sub.add_parser("generate", help="Generate an image from a prompt."))

    edit = sub.add_parser("edit", help="Edit an existing image.")
    _add_request_args(edit)
    edit.add_argument("--image", required=True, help="Base image: path, file:// URL or data URL.")
    edit.add_argument("--mask", help="Optional mask image.")

    sub.add_parser("backends", help="List backends and their configuration status.")

    rec = sub.add_parser("recommend", help="Show recommended backends for a prompt.")
    rec.add_argument("prompt")
    return ap


def main(argv: Optional[Sequence[str]] = None, *, env: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(env)
        setup_logging(settings.log_dir)
        events = EventLogger(os.path.join(settings.log_dir, "events.jsonl"))
        dispatcher = build_dispatcher(settings, env=env, event_logger=events)

        if args.command == "backends":
            _emit({
                "backends": [s.to_dict() for s in dispatcher.list_backends()],
                "configured": dispatcher.get_configured_backends(),
                "configured_edit": dispatcher.get_configured_edit_backends(),
            })
            return 0

        if args.command == "recommend":
            _emit(dispatcher.recommend(args.prompt).to_dict())
            return 0

        fields = _request_fields(args)
        if args.command == "edit":
            fields["base_image"] = args.image
            if args.mask:
                fields["mask_image"] = args.mask
            result = dispatcher.edit(parse_request(EditRequest, fields))
        else:
            result = dispatcher.generate(parse_request(GenerationRequest, fields))

        out_dir = args.output_dir or settings.output_dir
        try:
            saved = save_images(result, out_dir)
        except OSError as e:
            raise InvalidInputError(
                f"Could not write images to {out_dir}: {e.strerror or e}",
                backend=result.backend,
                field="output_dir",
            ) from e
        _emit(
            {
                "images": saved,
                "backend": result.backend,
                "model": result.model,
                "warnings": list(result.warnings),
            },
            markdown=args.markdown,
        )
        return 0
    except ImageRouterError as e:
        logger.error("%s failed: %s", args.command, e)
        _emit({
            "error": e.user_message,
            "code": e.code,
            "backend": e.backend,
            "tried_backends": list(e.tried_backends),
        })
        return 1


if __name__ == "__main__":
    sys.exit(main())

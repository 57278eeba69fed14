#!/usr/bin/env python3
"""
Build a tiny source image tree for local demos.

Creates images/{Collection}/{group}/{variant}/{name}.png with synthetic
content (gradient + shapes + label), optionally with a transparent
background, so the server and precache have something to convert.

Examples:
  python scripts/build_sample_assets.py
  python scripts/build_sample_assets.py --root data/images --collections Logos --count 5 --size 256
"""
from __future__ import annotations

import argparse
import random
from pathlib import Path
from typing import Tuple

from PIL import Image, ImageDraw


def synthesize_image(size: Tuple[int, int], label: str, seed: int, transparent: bool) -> Image.Image:
    """Generate a simple image with a gradient, random shapes and a label."""
    w, h = size
    rng = random.Random(seed)
    mode = "RGBA" if transparent else "RGB"
    img = Image.new(mode, size, (0, 0, 0, 0) if transparent else (255, 255, 255))
    draw = ImageDraw.Draw(img)

    if not transparent:
        c0 = [rng.randint(0, 255) for _ in range(3)]
        c1 = [rng.randint(0, 255) for _ in range(3)]
        for y in range(h):
            t = y / max(1, h - 1)
            draw.line([(0, y), (w - 1, y)], fill=tuple(int(a + (b - a) * t) for a, b in zip(c0, c1)))

    for _ in range(12):
        x1, y1 = rng.randint(0, w - 1), rng.randint(0, h - 1)
        x2, y2 = rng.randint(0, w - 1), rng.randint(0, h - 1)
        color = tuple(rng.randint(30, 225) for _ in range(3)) + ((255,) if transparent else ())
        box = [min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)]
        if rng.random() < 0.5:
            draw.rectangle(box, outline=color, width=2)
        else:
            draw.ellipse(box, fill=color)

    draw.text((8, h - 18), label, fill=(20, 20, 20, 255) if transparent else (20, 20, 20))
    return img


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--root", default="images", help="Source images root")
    ap.add_argument("--collections", nargs="+", default=["Logos", "Screenshots"])
    ap.add_argument("--count", type=int, default=3, help="Images per collection")
    ap.add_argument("--size", type=int, default=320, help="Image width/height in pixels")
    ap.add_argument("--seed", type=int, default=1234)
    args = ap.parse_args()

    root = Path(args.root)
    for ci, coll in enumerate(args.collections):
        for i in range(args.count):
            out = root / coll / f"group{i % 2}" / "default" / f"{coll.lower()}_{i}.png"
            out.parent.mkdir(parents=True, exist_ok=True)
            img = synthesize_image((args.size, args.size), f"{coll} #{i}", args.seed + ci * 100 + i,
                                   transparent=(coll == "Logos"))
            img.save(out, format="PNG")
            print(f"[ok] wrote {out}")

    print("Sample assets ready. You can now run the server:")
    print("  uvicorn image_server.server:create_app --factory --port 8000")
    print(f"  curl 'http://localhost:8000/{args.collections[0]}/group0/default/{args.collections[0].lower()}_0.jpg?type=jpg' -o out.jpg")


if __name__ == "__main__":
    main()

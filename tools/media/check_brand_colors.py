from __future__ import annotations

import argparse
import json
from pathlib import Path

from PIL import Image

from core.config import settings
from services.media.analysis import analyze_brand_colors, average_color_of, dominant_color, to_hex


def main() -> None:
    parser = argparse.ArgumentParser(description="Report brand palette advisories for images before upload")
    parser.add_argument("images", type=Path, nargs="+")
    parser.add_argument("--json", action="store_true", help="print one JSON object per image")
    args = parser.parse_args()

    for path in args.images:
        with Image.open(path) as im:
            analysis = analyze_brand_colors(im, settings)
            row = {
                "image": str(path),
                "avg_color": average_color_of(im),
                "dominant": to_hex(dominant_color(im)),
                "hue": analysis.avg_hue,
                "saturation": analysis.saturation,
                "message": analysis.message,
            }
        if args.json:
            print(json.dumps(row, ensure_ascii=False))
        else:
            print(f"{row['image']}: {row['dominant']} hue={row['hue']} {row['message'] or 'ok'}")


if __name__ == "__main__":
    main()

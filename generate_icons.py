# /// script
# dependencies = ["pillow"]
# ///
"""
Generate the site icons and social preview image from one source photo.

Usage:
    uv run --script generate_icons.py

Expects a high-quality square image (1024x1024 or larger) at
./source-image.jpg. Writes PNG icons, favicon.ico and og-image.jpg to
./public/, overwriting any previous versions.
"""

import sys
from pathlib import Path

from PIL import Image, ImageOps

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

SOURCE_IMAGE = Path("source-image.jpg")
PUBLIC_DIR = Path("public")

ICON_SIZES = [
    ("icon-192.png", 192),          # PWA small
    ("icon-512.png", 512),          # PWA large
    ("apple-touch-icon.png", 180),  # iOS
    ("favicon-32x32.png", 32),
    ("favicon-16x16.png", 16),
]

OG_IMAGE = ("og-image.jpg", 1200, 630)
OG_QUALITY = 85

FAVICON_NAME = "favicon.ico"
FAVICON_SIZES = (16, 32, 48)


# ---------------------------------------------------------------------------
# Resizing
# ---------------------------------------------------------------------------

def cover_fit(img: Image.Image, width: int, height: int) -> Image.Image:
    """Center-crop img to the width:height aspect ratio, then resize."""
    w, h = img.size
    if w * height > h * width:
        # Too wide: keep full height
        crop_w, crop_h = round(h * width / height), h
    else:
        crop_w, crop_h = w, round(w * height / width)
    left = (w - crop_w) // 2
    top = (h - crop_h) // 2
    img = img.crop((left, top, left + crop_w, top + crop_h))
    return img.resize((width, height), Image.LANCZOS)


def generate_icons(source: Path, public_dir: Path) -> list[Path]:
    """Write every icon plus the OG image; returns the paths written."""
    if not source.is_file():
        raise FileNotFoundError(f"Source image not found: {source}")

    public_dir.mkdir(parents=True, exist_ok=True)
    written = []

    with Image.open(source) as src:
        img = ImageOps.exif_transpose(src)
        icon_base = img.convert("RGBA")

        for name, size in ICON_SIZES:
            dst = public_dir / name
            cover_fit(icon_base, size, size).save(dst, "PNG", optimize=True)
            print(f"  Generated {name} ({size}x{size})")
            written.append(dst)

        name, width, height = OG_IMAGE
        dst = public_dir / name
        cover_fit(img.convert("RGB"), width, height).save(dst, "JPEG", quality=OG_QUALITY)
        print(f"  Generated {name} ({width}x{height})")
        written.append(dst)

        # ICO embeds every size, downscaled from the largest square
        largest = max(FAVICON_SIZES)
        dst = public_dir / FAVICON_NAME
        cover_fit(icon_base, largest, largest).save(
            dst, "ICO", sizes=[(s, s) for s in FAVICON_SIZES]
        )
        print(f"  Generated {FAVICON_NAME} ({', '.join(f'{s}x{s}' for s in FAVICON_SIZES)})")
        written.append(dst)

    return written


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    print("Generating icons from source image...")
    try:
        written = generate_icons(SOURCE_IMAGE, PUBLIC_DIR)
    except FileNotFoundError as e:
        print(f"ERROR {e}", file=sys.stderr)
        print(f"  Add a square image (1024x1024 or larger) as '{SOURCE_IMAGE}' in the site root",
              file=sys.stderr)
        return 1

    print(f"\nDone! {len(written)} files written to {PUBLIC_DIR}/")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

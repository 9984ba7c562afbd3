import logging
import time
from pathlib import Path

import cv2
import numpy as np

from errors import StorageError, UnsupportedFormatError

logger = logging.getLogger(__name__)

# ── Output format ──
TARGET_WIDTH = 1080
TARGET_HEIGHT = 1920
JPEG_QUALITY = 75
UPLOAD_SUBDIR = "uploads"


def fill(img: np.ndarray, width: int = TARGET_WIDTH, height: int = TARGET_HEIGHT) -> np.ndarray:
    """
    Center-crop `img` to the target aspect ratio, then resize to exactly
    width x height with Lanczos. No letterboxing.
    """
    src_h, src_w = img.shape[:2]
    target_ratio = width / height

    if src_w / src_h > target_ratio:
        crop_w = max(1, min(src_w, round(src_h * target_ratio)))
        crop_h = src_h
    else:
        crop_w = src_w
        crop_h = max(1, min(src_h, round(src_w / target_ratio)))

    x0 = (src_w - crop_w) // 2
    y0 = (src_h - crop_h) // 2
    cropped = img[y0:y0 + crop_h, x0:x0 + crop_w]

    return cv2.resize(cropped, (width, height), interpolation=cv2.INTER_LANCZOS4)


def decode(raw: bytes) -> np.ndarray:
    if not raw:
        raise UnsupportedFormatError("empty image upload")
    buf = np.frombuffer(raw, dtype=np.uint8)
    try:
        img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise UnsupportedFormatError("image could not be decoded") from e
    if img is None:
        raise UnsupportedFormatError("unsupported image format")
    return img


def encode_jpeg(img: np.ndarray, quality: int = JPEG_QUALITY) -> bytes:
    ok, encoded = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise StorageError("jpeg encoding failed")
    return encoded.tobytes()


class ImagePipeline:
    """
    Normalizes uploaded photos to a 1080x1920 JPEG and stores them under
    `<static_dir>/uploads/`. Returned paths are relative to `static_dir`.
    """

    def __init__(self, static_dir: Path, subdir: str = UPLOAD_SUBDIR):
        self.static_dir = Path(static_dir)
        self.subdir = subdir

    @property
    def upload_dir(self) -> Path:
        return self.static_dir / self.subdir

    def ingest(self, raw: bytes) -> str:
        data = encode_jpeg(fill(decode(raw)))

        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"create dir: {e}") from e

        stamp = time.time_ns()
        while True:
            filename = f"{stamp}.jpg"
            try:
                # 'x' refuses to overwrite a file from a concurrent upload
                with open(self.upload_dir / filename, "xb") as out:
                    out.write(data)
                break
            except FileExistsError:
                stamp += 1
            except OSError as e:
                raise StorageError(f"write {filename}: {e}") from e

        rel_path = f"{self.subdir}/{filename}"
        logger.info(f"[Images] Stored {rel_path} ({len(data)} bytes)")
        return rel_path

    def discard(self, rel_path: str) -> None:
        """Remove a stored image, e.g. when the report referencing it was never saved."""
        if not rel_path:
            return
        try:
            (self.static_dir / rel_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[Images] Could not remove {rel_path}: {e}")

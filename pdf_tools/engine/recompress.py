"""Ghostscript recompression at a chosen quality, plus qpdf linearization.

Quality 1..100 maps onto two Ghostscript parameters, both non-decreasing
in quality:

    quality   image resolution (dpi)   JPEG quality
    <= 10              72                   20
       50             173                   53
       80             249                   78
      100             300 (no downsampling) 95

Values between are linear, rounded half up. There is no fallback to the
un-recompressed document: any failure fails the merge.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pdf_tools.core.exceptions import ProcessTimeout, RecompressionFailedError
from pdf_tools.core.utils import get_file_size_mb
from pdf_tools.engine.page_counter import summarize_qpdf_error
from pdf_tools.engine.process import QPDF_OK_CODES, get_ghostscript_command, get_qpdf_command, run_process

logger = logging.getLogger(__name__)

MIN_QUALITY = 1
MAX_QUALITY = 100
# Qualities below this floor all behave like the floor.
QUALITY_FLOOR = 10
MIN_RESOLUTION_DPI = 72
MAX_RESOLUTION_DPI = 300
MIN_JPEG_QUALITY = 20
MAX_JPEG_QUALITY = 95
# 1-bit scans keep their line work readable at every quality.
MONO_IMAGE_RESOLUTION = 600


@dataclass(frozen=True)
class GhostscriptParams:
    resolution_dpi: int
    jpeg_quality: int
    downsample: bool


def _interpolate(step: int, low: int, high: int) -> int:
    span = MAX_QUALITY - QUALITY_FLOOR
    # Integer round-half-up of low + step * (high - low) / span.
    return low + (2 * step * (high - low) + span) // (2 * span)


def quality_to_gs_params(quality: int) -> GhostscriptParams:
    """Map a 1..100 quality onto Ghostscript image settings.

    Raises:
        ValueError: quality is outside 1..100.
    """
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise ValueError(f"quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {quality}")
    step = max(quality, QUALITY_FLOOR) - QUALITY_FLOOR
    return GhostscriptParams(
        resolution_dpi=_interpolate(step, MIN_RESOLUTION_DPI, MAX_RESOLUTION_DPI),
        jpeg_quality=_interpolate(step, MIN_JPEG_QUALITY, MAX_JPEG_QUALITY),
        downsample=quality < MAX_QUALITY,
    )


def build_ghostscript_command(gs_cmd: str, input_path: Path, output_path: Path, params: GhostscriptParams) -> List[str]:
    cmd = [
        gs_cmd,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dSAFER",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
    ]
    if params.downsample:
        cmd += [
            # Force JPEG so the quality factor applies to every color/gray image.
            "-dAutoFilterColorImages=false",
            "-dColorImageFilter=/DCTEncode",
            "-dAutoFilterGrayImages=false",
            "-dGrayImageFilter=/DCTEncode",
            "-dDownsampleColorImages=true",
            "-dColorImageDownsampleType=/Bicubic",
            f"-dColorImageResolution={params.resolution_dpi}",
            "-dDownsampleGrayImages=true",
            "-dGrayImageDownsampleType=/Bicubic",
            f"-dGrayImageResolution={params.resolution_dpi}",
            "-dDownsampleMonoImages=true",
            "-dMonoImageDownsampleType=/Subsample",
            f"-dMonoImageResolution={MONO_IMAGE_RESOLUTION}",
        ]
    else:
        cmd += [
            "-dDownsampleColorImages=false",
            "-dDownsampleGrayImages=false",
            "-dDownsampleMonoImages=false",
            "-dPassThroughJPEGImages=true",
            "-dPassThroughJPXImages=true",
        ]
    cmd += [
        f"-dJPEGQ={params.jpeg_quality}",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]
    return cmd


def translate_ghostscript_error(stderr: str, return_code: int) -> str:
    """Translate Ghostscript stderr to a clear, user-friendly error message.

    Also logs the full stderr for debugging purposes.
    """
    logger.error(f"Ghostscript failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()

    if "invalidfileaccess" in stderr_lower or "password" in stderr_lower:
        return "the merged PDF contains password-protected content"

    if "typecheck" in stderr_lower or "rangecheck" in stderr_lower:
        return "the merged PDF has corrupted internal data"

    if any(x in stderr_lower for x in ["undefined", "ioerror", "syntaxerror", "eofread"]):
        return "the merged PDF is damaged"

    return f"Ghostscript exit code {return_code}"


def recompress(
    input_path: Path,
    output_path: Path,
    quality: int,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> GhostscriptParams:
    """Re-encode ``input_path`` into ``output_path`` at ``quality``.

    Returns:
        The Ghostscript parameters that were applied.

    Raises:
        RecompressionFailedError: Ghostscript missing, failed or timed out.
    """
    params = quality_to_gs_params(quality)
    gs_cmd = get_ghostscript_command()
    if not gs_cmd:
        raise RecompressionFailedError.for_stage("recompress", "Ghostscript not installed")

    file_mb = get_file_size_mb(input_path)
    logger.info(
        "Recompressing %s (%.1fMB) at quality %d: %ddpi, JPEGQ=%d, downsample=%s",
        input_path.name,
        file_mb,
        quality,
        params.resolution_dpi,
        params.jpeg_quality,
        params.downsample,
    )

    cmd = build_ghostscript_command(gs_cmd, input_path, output_path, params)
    try:
        result = run_process(cmd, timeout, cancel_event, label="gs-recompress")
    except ProcessTimeout as exc:
        raise RecompressionFailedError.for_stage("recompress", f"timed out after {timeout:.0f}s") from exc

    if not result.ok:
        raise RecompressionFailedError.for_stage(
            "recompress", translate_ghostscript_error(result.stderr, result.returncode)
        )
    if not output_path.exists():
        raise RecompressionFailedError.for_stage("recompress", "Output file not created")

    out_mb = get_file_size_mb(output_path)
    reduction = ((file_mb - out_mb) / file_mb) * 100 if file_mb > 0 else 0.0
    logger.info(f"Result: {file_mb:.1f}MB -> {out_mb:.1f}MB ({reduction:.1f}% reduction)")
    return params


def linearize(
    input_path: Path,
    output_path: Path,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Rewrite the file for first-page-first rendering; pages are unchanged.

    Raises:
        RecompressionFailedError: qpdf missing, failed or timed out.
    """
    qpdf = get_qpdf_command()
    if qpdf is None:
        raise RecompressionFailedError.for_stage("linearize", "qpdf not installed")

    try:
        result = run_process([qpdf, "--linearize", str(input_path), str(output_path)], timeout, cancel_event, label="qpdf-linearize")
    except ProcessTimeout as exc:
        raise RecompressionFailedError.for_stage("linearize", f"timed out after {timeout:.0f}s") from exc

    if result.returncode not in QPDF_OK_CODES:
        logger.error("qpdf --linearize failed (exit %s):\n%s", result.returncode, result.stderr)
        raise RecompressionFailedError.for_stage("linearize", summarize_qpdf_error(result.stderr))
    if not output_path.exists():
        raise RecompressionFailedError.for_stage("linearize", "Output file not created")

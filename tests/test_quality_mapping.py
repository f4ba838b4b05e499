import unittest
from pathlib import Path

from pdf_tools.engine.recompress import (
    GhostscriptParams,
    build_ghostscript_command,
    quality_to_gs_params,
    translate_ghostscript_error,
)

# quality -> (resolution dpi, JPEG quality)
GOLDEN = {
    1: (72, 20),
    9: (72, 20),
    10: (72, 20),
    25: (110, 33),
    50: (173, 53),
    55: (186, 58),
    80: (249, 78),
    90: (275, 87),
    100: (300, 95),
}


class TestQualityMapping(unittest.TestCase):
    def test_golden_table(self):
        for quality, (dpi, jpegq) in GOLDEN.items():
            with self.subTest(quality=quality):
                params = quality_to_gs_params(quality)
                self.assertEqual(params.resolution_dpi, dpi)
                self.assertEqual(params.jpeg_quality, jpegq)

    def test_mapping_is_monotonic(self):
        previous = quality_to_gs_params(1)
        for quality in range(2, 101):
            current = quality_to_gs_params(quality)
            self.assertGreaterEqual(current.resolution_dpi, previous.resolution_dpi, quality)
            self.assertGreaterEqual(current.jpeg_quality, previous.jpeg_quality, quality)
            previous = current

    def test_only_full_quality_disables_downsampling(self):
        self.assertFalse(quality_to_gs_params(100).downsample)
        self.assertTrue(quality_to_gs_params(99).downsample)
        self.assertTrue(quality_to_gs_params(1).downsample)

    def test_out_of_range_quality_rejected(self):
        for quality in (0, -5, 101):
            with self.subTest(quality=quality):
                with self.assertRaises(ValueError):
                    quality_to_gs_params(quality)


class TestGhostscriptCommand(unittest.TestCase):
    def test_downsampling_command_uses_mapped_values(self):
        params = quality_to_gs_params(50)
        cmd = build_ghostscript_command("gs", Path("in.pdf"), Path("out.pdf"), params)

        self.assertEqual(cmd[0], "gs")
        self.assertIn("-dSAFER", cmd)
        self.assertIn("-dColorImageResolution=173", cmd)
        self.assertIn("-dGrayImageResolution=173", cmd)
        self.assertIn("-dJPEGQ=53", cmd)
        self.assertIn("-sOutputFile=out.pdf", cmd)
        self.assertEqual(cmd[-1], "in.pdf")
        self.assertNotIn("-dPassThroughJPEGImages=true", cmd)

    def test_full_quality_passes_images_through(self):
        params = GhostscriptParams(resolution_dpi=300, jpeg_quality=95, downsample=False)
        cmd = build_ghostscript_command("gs", Path("in.pdf"), Path("out.pdf"), params)

        self.assertIn("-dDownsampleColorImages=false", cmd)
        self.assertIn("-dPassThroughJPEGImages=true", cmd)
        self.assertFalse(any(arg.startswith("-dColorImageResolution") for arg in cmd))

    def test_error_translation(self):
        self.assertIn("password", translate_ghostscript_error("Error: /invalidfileaccess", 1))
        self.assertIn("damaged", translate_ghostscript_error("Error: /syntaxerror in pdf", 1))
        self.assertEqual(translate_ghostscript_error("", 7), "Ghostscript exit code 7")


if __name__ == "__main__":
    unittest.main()

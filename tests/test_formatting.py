from __future__ import annotations

import unittest
from datetime import datetime, timezone

from embedbot.formatting import (
    extract_nft_subtitle,
    format_amount,
    format_short_date,
    format_units,
    high_res_image,
    render_template,
)


class FormattingTests(unittest.TestCase):
    def test_format_units(self) -> None:
        self.assertEqual(format_units(1500000000000000000, 18), "1.5")
        self.assertEqual(format_units("2000000", 6), "2.0")
        self.assertEqual(format_units(5, 18), "0.000000000000000005")

    def test_format_amount_trims_long_fractions(self) -> None:
        self.assertEqual(format_amount(10**18, 18, "ETH"), "1 ETH")
        self.assertEqual(format_amount(123400000000000000, 18, "ETH"), "0.1234 ETH")
        self.assertEqual(format_amount(123456789000000000, 18, "WETH"), "0.12345 WETH")

    def test_format_short_date(self) -> None:
        self.assertEqual(format_short_date(datetime(2024, 3, 9, tzinfo=timezone.utc)), "Mar '24")
        self.assertEqual(format_short_date(1700000000), "Nov '23")

    def test_high_res_image(self) -> None:
        self.assertEqual(
            high_res_image("https://i.seadn.io/img.png?w=500&auto=format"),
            "https://i.seadn.io/img.png?w=1000&auto=format",
        )
        self.assertEqual(high_res_image("https://img.com/1.png"), "https://img.com/1.png")
        self.assertIsNone(high_res_image(None))

    def test_extract_nft_subtitle(self) -> None:
        self.assertEqual(extract_nft_subtitle("GlyphBot #12 - Vector the Kind"), "Vector the Kind")
        self.assertEqual(extract_nft_subtitle("Plain #12"), "Plain #12")

    def test_render_template_replaces_every_placeholder(self) -> None:
        self.assertEqual(render_template("{id} and {id}", 7), "7 and 7")
        self.assertEqual(render_template(None, 7), "")


if __name__ == "__main__":
    unittest.main()

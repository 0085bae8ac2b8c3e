"""
Test color quiz conversion and answer validation
"""

import random
import sys
import os
from io import BytesIO

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from PIL import Image

from core.color_quiz import ColorQuiz, parse_hex, parse_oklch, rgb_to_oklch


def test_hex_tolerance_boundary():
    """Test a summed channel difference of 20 passes and 21 fails"""
    quiz = ColorQuiz(200, 200, 200)

    assert quiz.validate_answer("#c8c8c8")
    assert quiz.validate_answer("#b4c8c8")  # 20 away
    assert not quiz.validate_answer("#b3c8c8")  # 21 away
    assert quiz.validate_answer("#C2CCCC")  # 6 + 4 + 4
    assert quiz.validate_answer("#b3c8c8", hex_tolerance=25)
    print("✓ Hex tolerance boundary test passed")


def test_oklch_of_red():
    """Test pure red lands near oklch(62.8% 0.258 29.2)"""
    lightness, chroma, hue = rgb_to_oklch(255, 0, 0)

    assert 60 <= lightness <= 70
    assert chroma > 0.25
    assert 20 <= hue <= 40
    print("✓ OKLCH red test passed")
    print(f"  oklch({lightness:.1f}% {chroma:.3f} {hue:.1f})")


def test_oklch_answer_formats():
    """Test every accepted OKLCH spelling"""
    quiz = ColorQuiz(255, 0, 0)

    assert quiz.validate_answer("oklch(62.8% 0.258 29.2)")
    assert quiz.validate_answer("62.8% 0.258 29.2")
    assert quiz.validate_answer("62.8%, 0.258, 29.2")
    assert quiz.validate_answer("60 0.22 35")
    assert not quiz.validate_answer("40% 0.258 29.2")  # Lightness off
    assert not quiz.validate_answer("62.8% 0.1 29.2")  # Chroma off
    assert not quiz.validate_answer("62.8% 0.258 60")  # Hue off
    assert not quiz.validate_answer("red")
    print("✓ OKLCH answer format test passed")


def test_hue_wraparound():
    """Test hue distance wraps around 360 degrees"""
    quiz = ColorQuiz(255, 0, 0)
    lightness, chroma, hue = rgb_to_oklch(255, 0, 0)

    wrapped = (hue - 25) % 360  # Still 25 degrees away, just the other way around
    assert not quiz.validate_oklch(f"{lightness}% {chroma} {wrapped}")
    assert quiz.validate_oklch(f"{lightness}% {chroma} {hue + 355}")
    print("✓ Hue wraparound test passed")


def test_parsers():
    assert parse_hex("#ff8000") == (255, 128, 0)
    assert parse_hex("ff8000") == (255, 128, 0)
    assert parse_hex("#fff") is None
    assert parse_hex("#gggggg") is None

    assert parse_oklch("oklch(50% 0.1 120)") == (50.0, 0.1, 120.0)
    assert parse_oklch("50 0.1") is None
    print("✓ Parser test passed")


def test_generate_image():
    """Test the quiz image is a flat PNG of the quiz color"""
    quiz = ColorQuiz.generate(random.Random(7))
    data = quiz.generate_image()

    image = Image.open(BytesIO(data))
    assert image.format == "PNG"
    assert image.size == (640, 360)
    assert image.getpixel((0, 0)) == (quiz.r, quiz.g, quiz.b)
    assert image.getpixel((639, 359)) == (quiz.r, quiz.g, quiz.b)
    print("✓ Image generation test passed")


def test_describe():
    quiz = ColorQuiz(255, 0, 0)
    description = quiz.describe()

    assert "#ff0000" in description
    assert "oklch(" in description
    print("✓ Describe test passed")


if __name__ == "__main__":
    test_hex_tolerance_boundary()
    test_oklch_of_red()
    test_oklch_answer_formats()
    test_hue_wraparound()
    test_parsers()
    test_generate_image()
    test_describe()
    print("\n✅ All color quiz tests passed!")

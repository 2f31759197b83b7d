"""Tests for instructions module."""

import pytest

from shootcleaner.instructions import (
    KNOWN_OPERATIONS,
    Blur,
    BrightnessContrast,
    ColorMatrix,
    Despeckle,
    Evaluate,
    Format,
    Modulate,
    Quality,
    Resize,
    SepiaTone,
    UnknownOperation,
    Unsharp,
    Vignette,
    command_for,
    format_number,
    is_known,
    to_dict,
)


class TestFormatNumber:
    """Tests for format_number function."""

    def test_integral_values_drop_decimal(self) -> None:
        """Test that 2.0 renders as 2."""
        assert format_number(2.0) == "2"
        assert format_number(-15) == "-15"

    def test_fractional_values(self) -> None:
        """Test that fractions keep their shortest form."""
        assert format_number(0.5) == "0.5"
        assert format_number(1.1) == "1.1"

    def test_fractional_values_keep_full_precision(self) -> None:
        """Test that rendered fractions read back as the same float."""
        assert format_number(2**0.5) == "1.4142135623730951"
        assert float(format_number(2**-0.5)) == 2**-0.5
        assert float(format_number(1 / 3)) == 1 / 3


class TestParams:
    """Tests for instruction parameter rendering."""

    def test_brightness_contrast(self) -> None:
        """Test brightness-contrast geometry."""
        assert BrightnessContrast(10, -5).params == ["10x-5"]

    def test_modulate(self) -> None:
        """Test modulate percentages."""
        assert Modulate(100, 120, 100).params == ["100,120,100"]

    def test_evaluate(self) -> None:
        """Test evaluate operator and value."""
        assert Evaluate("multiply", 2.0).params == ["multiply", "2"]

    def test_unsharp(self) -> None:
        """Test unsharp geometry."""
        assert Unsharp(1, 1, 0.5, 0).params == ["1x1+0.5+0"]

    def test_resize_geometry(self) -> None:
        """Test shrink-to-fit and forced resize flags."""
        assert Resize(1920, 1080).params == ["1920x1080>"]
        assert Resize(800, 600, maintain_aspect_ratio=False).params == ["800x600!"]

    def test_parameterless(self) -> None:
        """Test operations without parameters."""
        assert Despeckle().params == []

    def test_blur_sepia_vignette(self) -> None:
        """Test the stylistic operations."""
        assert Blur(2).params == ["0x2"]
        assert SepiaTone(80).params == ["80%"]
        assert Vignette(25.5).params == ["0x25.5"]


class TestValidation:
    """Tests for instruction invariants."""

    def test_color_matrix_needs_nine_values(self) -> None:
        """Test that a short matrix is rejected."""
        with pytest.raises(ValueError, match="9 values"):
            ColorMatrix((1.0, 0.0, 0.0))

    def test_resize_dimensions_positive(self) -> None:
        """Test that zero dimensions are rejected."""
        with pytest.raises(ValueError, match="positive"):
            Resize(0, 100)

    def test_format_must_be_supported(self) -> None:
        """Test that unknown formats are rejected."""
        with pytest.raises(ValueError, match="Unsupported output format"):
            Format("gif")

    def test_quality_range(self) -> None:
        """Test quality bounds."""
        with pytest.raises(ValueError):
            Quality(0)
        with pytest.raises(ValueError):
            Quality(101)

    def test_format_extension(self) -> None:
        """Test the extension written for each format."""
        assert Format("jpeg").extension == ".jpg"
        assert Format("tiff").extension == ".tif"

    def test_stylistic_ranges(self) -> None:
        """Test blur, sepia and vignette bounds."""
        with pytest.raises(ValueError, match="Blur sigma"):
            Blur(0)
        with pytest.raises(ValueError, match="Sepia percent"):
            SepiaTone(120)
        with pytest.raises(ValueError, match="Vignette amount"):
            Vignette(0)


class TestCommandFor:
    """Tests for command_for function."""

    def test_modulate_command(self) -> None:
        """Test a typical command string."""
        assert command_for(Modulate(100, 120, 100)) == "-modulate 100,120,100"

    def test_parameterless_command(self) -> None:
        """Test a command without parameters."""
        assert command_for(Despeckle()) == "-despeckle"

    def test_color_matrix_is_quoted(self) -> None:
        """Test that the matrix stays one argument."""
        command = command_for(ColorMatrix((1.1, 0, 0, 0, 1, 0, 0, 0, 0.9)))
        assert command == '-color-matrix "1.1 0 0 0 1 0 0 0 0.9"'

    def test_stylistic_commands(self) -> None:
        """Test the ImageMagick commands for blur, sepia and vignette."""
        assert command_for(Blur(1.5)) == "-blur 0x1.5"
        assert command_for(SepiaTone(80)) == "-sepia-tone 80%"
        assert command_for(Vignette(30)) == "-vignette 0x30"


class TestKnownOperations:
    """Tests for the operation registry."""

    def test_registry_maps_names_to_classes(self) -> None:
        """Test every registered class reports its own name."""
        for name, cls in KNOWN_OPERATIONS.items():
            assert cls.operation == name

    def test_unknown_operation(self) -> None:
        """Test unknown operations keep their name and params."""
        unknown = UnknownOperation("swirl", ("20",))
        assert not is_known(unknown)
        assert is_known(Despeckle())
        assert to_dict(unknown) == {"operation": "swirl", "params": ["20"]}

    def test_stylistic_operations_registered(self) -> None:
        """Test that blur, sepia-tone and vignette are known."""
        assert KNOWN_OPERATIONS["blur"] is Blur
        assert KNOWN_OPERATIONS["sepia-tone"] is SepiaTone
        assert KNOWN_OPERATIONS["vignette"] is Vignette

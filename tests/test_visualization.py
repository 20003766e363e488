"""Unit tests for cancer_survival.visualization module."""
import pytest
import pandas as pd
from cancer_survival.survival import fit_kaplan_meier
from cancer_survival.visualization import (
    ChartKind,
    ChartSpec,
    default_chart_specs,
    render_chart,
    plot_survival_curve,
)
from cancer_survival.exceptions import PlotError

PNG_SIGNATURE = b"\x89PNG"


def _is_png(path):
    with open(path, "rb") as f:
        return f.read(4) == PNG_SIGNATURE


class TestRenderChart:
    """Tests for render_chart function."""

    @pytest.mark.parametrize("spec", [
        ChartSpec(ChartKind.BAR, "bar.png", x="deprivation_score"),
        ChartSpec(ChartKind.BAR, "stacked.png", x="region", group="death_status"),
        ChartSpec(ChartKind.FACETED_BAR, "facet.png", x="deprivation_score", facet="region"),
        ChartSpec(ChartKind.BOXPLOT, "box.png", y="age_at_diagnosis"),
        ChartSpec(ChartKind.BOXPLOT, "grouped_box.png", x="region", y="survival_time"),
        ChartSpec(ChartKind.HISTOGRAM, "hist.png", x="survival_time", group="death_status", bins=10),
    ])
    def test_each_kind_writes_png(self, synthetic_table, tmp_path, spec):
        """Test that every chart kind writes a PNG file."""
        path = render_chart(synthetic_table, spec, tmp_path / "figures")

        assert path == tmp_path / "figures" / spec.filename
        assert _is_png(path)

    def test_kind_given_as_string(self, synthetic_table, tmp_path):
        """Test that a plain string kind is accepted."""
        path = render_chart(synthetic_table, ChartSpec("bar", "bar.png", x="region"), tmp_path)

        assert path.exists()

    def test_input_not_modified(self, synthetic_table, tmp_path):
        """Test that rendering leaves the table unchanged."""
        before = synthetic_table.copy()

        for spec in default_chart_specs():
            render_chart(synthetic_table, spec, tmp_path)

        pd.testing.assert_frame_equal(synthetic_table, before)

    def test_default_specs_render(self, synthetic_table, tmp_path):
        """Test that the default chart set renders eight distinct files."""
        specs = default_chart_specs()

        paths = [render_chart(synthetic_table, spec, tmp_path) for spec in specs]

        assert len(specs) == 8
        assert len({p.name for p in paths}) == 8
        assert all(_is_png(p) for p in paths)

    def test_unknown_kind(self, synthetic_table, tmp_path):
        """Test that an unknown chart kind raises PlotError."""
        with pytest.raises(PlotError, match="Unknown chart kind"):
            render_chart(synthetic_table, ChartSpec("pie", "pie.png", x="region"), tmp_path)

    def test_missing_column(self, synthetic_table, tmp_path):
        """Test that a nonexistent column raises PlotError."""
        with pytest.raises(PlotError, match="not found"):
            render_chart(synthetic_table, ChartSpec("bar", "bar.png", x="tumour_grade"), tmp_path)

    def test_missing_required_field(self, synthetic_table, tmp_path):
        """Test that a boxplot without y raises PlotError."""
        with pytest.raises(PlotError, match="requires 'y'"):
            render_chart(synthetic_table, ChartSpec("boxplot", "box.png", x="region"), tmp_path)

    def test_non_numeric_boxplot(self, synthetic_table, tmp_path):
        """Test that a categorical y column raises PlotError."""
        with pytest.raises(PlotError, match="numeric"):
            render_chart(synthetic_table, ChartSpec("boxplot", "box.png", y="region"), tmp_path)

    def test_histogram_group_must_be_binary(self, synthetic_table, tmp_path):
        """Test that a multi-level histogram group raises PlotError."""
        spec = ChartSpec("histogram", "hist.png", x="survival_time", group="region")

        with pytest.raises(PlotError, match="binary"):
            render_chart(synthetic_table, spec, tmp_path)

    def test_non_positive_bins(self, synthetic_table, tmp_path):
        """Test that a zero bin count raises PlotError."""
        spec = ChartSpec("histogram", "hist.png", x="survival_time", group="death_status", bins=0)

        with pytest.raises(PlotError, match="bins"):
            render_chart(synthetic_table, spec, tmp_path)

    def test_nothing_written_on_error(self, synthetic_table, tmp_path):
        """Test that a rejected spec leaves no file behind."""
        with pytest.raises(PlotError):
            render_chart(synthetic_table, ChartSpec("pie", "pie.png", x="region"), tmp_path)

        assert not (tmp_path / "pie.png").exists()


class TestPlotSurvivalCurve:
    """Tests for plot_survival_curve function."""

    def test_writes_png(self, synthetic_table, tmp_path):
        """Test that the curve is written with its confidence band."""
        km = fit_kaplan_meier(
            synthetic_table["survival_time"], synthetic_table["death_observed"].astype(int)
        )

        path = plot_survival_curve(km, tmp_path / "km" / "curve.png")

        assert _is_png(path)

    def test_without_band(self, sample_durations_events, tmp_path):
        """Test plotting the curve alone."""
        km = fit_kaplan_meier(*sample_durations_events)

        path = plot_survival_curve(km, tmp_path / "curve.png", show_ci=False)

        assert path.exists()

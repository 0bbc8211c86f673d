"""
Unit Tests: Conversion Runner

Stages are driven through a fake executor that treats grids as JSON lists.

Test cases:
- Fixed stage order regardless of option order
- Intermediate cleanup and final naming
- Anomaly, normal and accumulated-difference composites
- Tool failures and real subprocess exit codes
"""

import itertools
import sys

import pytest
from pydantic import ValidationError

from conftest import FakeTools, read_grid, write_grid
from forager.conversions import (
    ConversionRunner,
    ExternalToolFailed,
    PipelineOptions,
    ToolsConfig,
    run_command,
)


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "download.grib"
    write_grid(path, [1.0, 2.0, 3.0])
    return path


@pytest.fixture
def geometry(tmp_path):
    path = tmp_path / "aoi.shp"
    path.write_text("polygon")
    return path


STAGE_FIELDS = ("clip_by", "factor", "as_geotiff", "record")


@pytest.mark.parametrize("order", list(itertools.permutations(STAGE_FIELDS)))
async def test_stage_order_is_fixed(order, temp_dir, source, geometry, tmp_path):
    tools = FakeTools()
    runner = ConversionRunner(temp_dir, execute=tools)
    values = {"clip_by": geometry, "factor": 2.0, "as_geotiff": True, "record": 1}
    options = PipelineOptions(**{key: values[key] for key in order})

    await runner.convert(source, tmp_path / "out" / "layer", options)

    assert tools.commands == ["wgrib", "gdalwarp", "cdo", "gdal_translate"]


async def test_convert_deletes_intermediates_and_keeps_input(temp_dir, source, geometry, tmp_path):
    tools = FakeTools()
    runner = ConversionRunner(temp_dir, execute=tools)
    options = PipelineOptions(record=2, clip_by=geometry, factor=10, as_geotiff=True)

    final = await runner.convert(source, tmp_path / "out" / "layer_2024", options)

    assert final == tmp_path / "out" / "layer_2024.tif"
    assert read_grid(final) == [10.0, 20.0, 30.0]
    assert source.exists()
    assert list(temp_dir.iterdir()) == []


async def test_convert_without_rasterize_writes_grib(temp_dir, source, tmp_path):
    runner = ConversionRunner(temp_dir, execute=FakeTools())

    final = await runner.convert(source, tmp_path / "grid", PipelineOptions(record=1))

    assert final == tmp_path / "grid.grib"
    assert final.exists()


async def test_extract_arguments(temp_dir, source):
    tools = FakeTools()
    runner = ConversionRunner(temp_dir, execute=tools)

    by_record = await runner.extract(source, PipelineOptions(record=3))
    by_match = await runner.extract(source, PipelineOptions(match=":TMP:", limit=1))

    assert tools.calls[0] == (
        "wgrib",
        [str(source), "-d", "3", "-grib", "-o", str(by_record)],
    )
    assert tools.calls[1] == (
        "wgrib2",
        [str(source), "-match", ":TMP:", "-limit", "1", "-grib", str(by_match)],
    )


async def test_custom_tool_names_are_used(temp_dir, source, tmp_path):
    tools = FakeTools()
    runner = ConversionRunner(
        temp_dir,
        tools=ToolsConfig(wgrib="/opt/bin/wgrib", cdo="/opt/bin/cdo"),
        execute=tools,
    )

    final = await runner.convert(source, tmp_path / "grid", PipelineOptions(record=1, factor=2))

    assert tools.commands == ["/opt/bin/wgrib", "/opt/bin/cdo"]
    assert read_grid(final) == [2.0, 4.0, 6.0]


async def test_anomaly_is_current_minus_normal(temp_dir, tmp_path):
    current = tmp_path / "current.grib"
    normal = tmp_path / "normal.grib"
    write_grid(current, [300.5, 290.0, 271.25])
    write_grid(normal, [280.0, 290.5, 270.0])
    tools = FakeTools()
    runner = ConversionRunner(temp_dir, execute=tools)

    final = await runner.convert_anomaly(
        normal,
        current,
        tmp_path / "out" / "layer_2024-01-01T00:00:00",
        PipelineOptions(record=1, as_geotiff=True),
    )

    assert final.name == "layer_2024-01-01T00:00:00.tif"
    assert read_grid(final) == pytest.approx([20.5, -0.5, 1.25])
    assert tools.commands == ["wgrib", "cdo", "gdal_translate"]
    assert tools.calls[1][1][:3] == ["sub", tools.calls[0][1][-1], str(normal)]
    assert current.exists() and normal.exists()
    assert list(temp_dir.iterdir()) == []


async def test_convert_normal_writes_time_mean_to_output(temp_dir, source, tmp_path):
    tools = FakeTools()
    runner = ConversionRunner(temp_dir, execute=tools)
    output = tmp_path / "cache" / "normal-01"

    result = await runner.convert_normal(source, output, PipelineOptions(record="all"))

    assert result == output
    assert read_grid(output) == [1.0, 2.0, 3.0]
    assert tools.commands == ["wgrib", "cdo"]
    assert tools.calls[0][1][2] == "all"
    assert tools.calls[1][1] == ["timmean", "-setmissval,-999", tools.calls[0][1][-1], str(output)]
    assert list(temp_dir.iterdir()) == []


async def test_convert_normal_rejects_geotiff(temp_dir, source, tmp_path):
    runner = ConversionRunner(temp_dir, execute=FakeTools())

    with pytest.raises(ValueError):
        await runner.convert_normal(
            source, tmp_path / "n", PipelineOptions(record="all", as_geotiff=True)
        )


async def test_combine_difference_scales(temp_dir, tmp_path):
    first = tmp_path / "later.grib"
    second = tmp_path / "earlier.grib"
    write_grid(first, [0.005, 0.003])
    write_grid(second, [0.002, 0.001])
    runner = ConversionRunner(temp_dir, execute=FakeTools())

    final = await runner.combine_difference(first, second, tmp_path / "precip", factor=1000)

    assert final == tmp_path / "precip.grib"
    assert read_grid(final) == pytest.approx([3.0, 2.0])
    assert list(temp_dir.iterdir()) == []


async def test_tool_failure_propagates(temp_dir, source, geometry, tmp_path):
    tools = FakeTools(fail={"gdalwarp"})
    runner = ConversionRunner(temp_dir, execute=tools)

    with pytest.raises(ExternalToolFailed) as exc_info:
        await runner.convert(
            source, tmp_path / "layer", PipelineOptions(record=1, clip_by=geometry, factor=2)
        )

    assert exc_info.value.command == "gdalwarp"
    assert exc_info.value.exit_code == 1
    assert tools.commands == ["wgrib", "gdalwarp"]
    assert not (tmp_path / "layer.grib").exists()


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"record": 1, "match": ":TMP:"},
        {"record": 1, "limit": 2},
        {"record": 0},
        {"record": 1, "factor": 0},
        {"record": 1, "unknown": True},
    ],
)
def test_invalid_options_are_rejected(fields):
    with pytest.raises(ValidationError):
        PipelineOptions(**fields)


async def test_run_command_returns_stdout():
    output = await run_command(sys.executable, ["-c", "print('ready')"])

    assert output.strip() == b"ready"


async def test_run_command_reports_exit_code_and_stderr():
    script = "import sys; sys.stderr.write('bad grid'); sys.exit(3)"

    with pytest.raises(ExternalToolFailed) as exc_info:
        await run_command(sys.executable, ["-c", script])

    assert exc_info.value.exit_code == 3
    assert "bad grid" in exc_info.value.stderr


async def test_run_command_missing_executable():
    with pytest.raises(ExternalToolFailed) as exc_info:
        await run_command("definitely-not-a-grib-tool", [])

    assert exc_info.value.exit_code is None
